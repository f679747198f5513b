from services.rendering.renderer import ArtifactRenderer


__all__ = ["ArtifactRenderer"]
