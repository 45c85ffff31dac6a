"""Command line interface (kafka-query)."""
