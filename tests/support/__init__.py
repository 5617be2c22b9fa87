"""Test doubles and builders shared by the test suite."""
