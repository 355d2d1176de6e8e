"""Natural-language editing service for a scene of shapes, text and images."""
