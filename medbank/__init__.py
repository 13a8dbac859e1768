"""Medbank: question bank, discussions and admin analytics backend."""
