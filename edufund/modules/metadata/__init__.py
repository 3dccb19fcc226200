# Metadata module
from edufund.modules.metadata.publisher import MetadataPublisher, PinataPublisher

__all__ = ["MetadataPublisher", "PinataPublisher"]
