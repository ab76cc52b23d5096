"""Core configuration, errors and collaborator interfaces."""
