"""Leaf utilities shared by the gateway, scanner and metadata resolver."""
