"""Host collaborators: processes, files, downloads."""
