import os, boto3
from botocore.config import Config


def get_dynamo_resource():
    """
    DynamoDB resource for the cache and citation tables.
    - Local development: set DYNAMO_LOCAL_URL (e.g. http://dynamodb-local:8000)
    - AWS: set AWS_REGION and the usual credential chain
    """
    local_url = os.getenv("DYNAMO_LOCAL_URL")
    region = os.getenv("AWS_REGION", "eu-central-1")
    cfg = Config(
        retries={"max_attempts": int(os.getenv("DYNAMO_MAX_ATTEMPTS", "10")), "mode": "standard"},
        connect_timeout=5,
        read_timeout=10,
    )
    kwargs = {"region_name": region, "config": cfg}
    if local_url:
        kwargs.update(
            endpoint_url=local_url,
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID", "dummy"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY", "dummy"),
        )
    return boto3.resource("dynamodb", **kwargs)
