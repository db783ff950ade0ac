"""Wire schema for the fmaas GenerationService."""
