"""Host label resolution from the EC2 instance metadata service."""
import httpx

from dogreporter.transport import TransportError

EC2_METADATA_URL = "http://169.254.169.254/latest/meta-data/instance-id"


def get_ec2_instance_id(url: str = EC2_METADATA_URL, timeout_s: float = 1.0, client: httpx.Client = None) -> str:
    """Return this instance's id, e.g. ``i-0abc123``."""
    try:
        if client is None:
            response = httpx.get(url, timeout=timeout_s)
        else:
            response = client.get(url, timeout=timeout_s)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise TransportError(f"Could not read instance id from {url}: {e}") from e
    instance_id = response.text.strip()
    if not instance_id:
        raise TransportError(f"Empty instance id returned by {url}")
    return instance_id
