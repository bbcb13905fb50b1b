"""HTTP adapter exposing the bookkeeping core to a local view layer."""
