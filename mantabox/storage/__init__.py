"""Backend gateways for the storage driver."""

from mantabox.storage.gateway import BackendGateway, Descriptor, DescriptorType, Tenant
from mantabox.storage.local_gateway import LocalGateway
from mantabox.storage.manta_gateway import MantaGateway
from mantabox.storage.s3_gateway import S3Gateway
from mantabox.storage.streams import ObjectReader, ObjectWriter

__all__ = [
    "BackendGateway",
    "Descriptor",
    "DescriptorType",
    "Tenant",
    "LocalGateway",
    "MantaGateway",
    "S3Gateway",
    "ObjectReader",
    "ObjectWriter",
]
