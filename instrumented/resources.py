import uuid

from opentelemetry.sdk.resources import SERVICE_INSTANCE_ID, SERVICE_NAME, Resource

DEFAULT_SERVICE_NAME = "getting-started-java"


def build_resource(service_name: str = DEFAULT_SERVICE_NAME) -> Resource:
    """
    Returns the resource describing this process: the SDK default attributes (and
    those configured through OTEL_RESOURCE_ATTRIBUTES), extended with the service
    name and a random service instance id. The instance id is generated on every
    call, so this function is meant to be called once per process.
    """
    return Resource.create(
        {
            SERVICE_NAME: service_name,
            SERVICE_INSTANCE_ID: str(uuid.uuid4()),
        }
    )
