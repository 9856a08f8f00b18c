"""Actions carrying out each step kind."""
