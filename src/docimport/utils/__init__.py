"""Small async helpers shared by the pipeline stages."""
