"""DeLex exchange and lending client."""
