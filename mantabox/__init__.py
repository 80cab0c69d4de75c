"""Dropbox-style storage driver for Manta and S3-compatible object stores."""
