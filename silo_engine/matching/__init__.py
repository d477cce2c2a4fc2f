"""URL pattern grammars, URL normalization and regex safety guards."""
