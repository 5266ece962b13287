import os
import boto3

REGION = os.getenv("AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1"))
ENDPOINT = os.getenv("AWS_ENDPOINT_URL")  # e.g., http://localhost:4566 for LocalStack

def _kw():
    k = {"region_name": REGION}
    if ENDPOINT:
        k["endpoint_url"] = ENDPOINT
    return k

def dynamodb_resource():
    return boto3.resource("dynamodb", **_kw())

def logs_client():
    # CloudWatch Logs is not proxied through the local endpoint
    return boto3.client("logs", region_name=REGION)
