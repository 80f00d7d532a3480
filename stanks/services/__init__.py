"""Economy services: trading, market, business simulation and reads."""
