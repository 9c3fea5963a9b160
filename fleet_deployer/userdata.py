import base64
import os
from abc import ABC, abstractmethod
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CollaboratorCallError, ValidationError
from .models import UserdataSource


class UserdataProvider(ABC):
    """Source of the base64 encoded startup payload handed to new instances"""

    def __init__(self, path):
        self.path = path

    @abstractmethod
    def provide(self):
        pass


class LocalFileProvider(UserdataProvider):
    def provide(self):
        if not self.path:
            raise ValidationError("Please specify userdata script path")
        if not os.path.isfile(self.path):
            raise ValidationError(f"Userdata file does not exist in {self.path}")
        with open(self.path, "rb") as f:
            return base64.b64encode(f.read()).decode("ascii")


class S3Provider(UserdataProvider):
    """Reads the payload from an s3://bucket/key location"""

    def __init__(self, path, session=None):
        super().__init__(path)
        self.session = session

    def _location(self):
        parsed = urlparse(self.path)
        if parsed.scheme != "s3" or not parsed.netloc or not parsed.path.strip("/"):
            raise ValidationError(f"Userdata path must look like s3://bucket/key, got '{self.path}'")
        return parsed.netloc, parsed.path.lstrip("/")

    def provide(self):
        bucket, key = self._location()
        session = self.session or boto3.Session()
        try:
            body = session.client("s3").get_object(Bucket=bucket, Key=key)["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise CollaboratorCallError("s3", "get_object", self.path, str(e)) from e
        return base64.b64encode(body).decode("ascii")


def resolve_source(stack_userdata, default_userdata):
    """Stack values win; missing fields fall back to the manifest default"""
    return UserdataSource(
        type=stack_userdata.type or default_userdata.type,
        path=stack_userdata.path or default_userdata.path,
    )


def build_provider(stack_userdata, default_userdata, session=None):
    source = resolve_source(stack_userdata, default_userdata)
    if source.type == "s3":
        return S3Provider(source.path, session=session)
    if source.type in ("", "local"):
        return LocalFileProvider(source.path)
    raise ValidationError(f"Unknown userdata type '{source.type}'")
