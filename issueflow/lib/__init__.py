"""Project configuration, constants, validation and collaborator helpers."""
