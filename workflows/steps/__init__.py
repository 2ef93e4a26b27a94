"""Concrete workflows: authentication, sales and policy management."""
