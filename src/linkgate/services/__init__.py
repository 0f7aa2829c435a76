"""Login link services: signing, usage counting, URL building and delivery."""
