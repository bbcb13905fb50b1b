"""Command-line front end for the bookkeeping core."""
