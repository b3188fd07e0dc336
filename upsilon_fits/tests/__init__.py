"""Test suite for the Upsilon mass fits."""
