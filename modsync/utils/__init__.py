"""Shared leaf utilities — file scanning, hashing, naming, logging setup."""
