"""Weaver Connect - social platform account connections."""
