"""Quiz package administration: the Flask API and the package editor core."""
