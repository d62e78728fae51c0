"""
Shared test fixtures.
"""

from typing import Dict

import pytest
from botocore.exceptions import ClientError

from stepdb.pipeline import InMemoryNamespacedStore, SqlAlchemyNamespacedStore

SAMPLE_STEP = b"""ISO-10303-21;
HEADER;
FILE_DESCRIPTION((''),'2;1');
FILE_NAME('1000410-28L.stp','2017-10-23T10:00:00',(''),(''),'','','');
ENDSEC;
DATA;
#1=CARTESIAN_POINT('',(0.,0.,0.));
#2=DIRECTION('',(0.,0.,1.));
#10=PRODUCT('part','part=1','',(#11));
#11=PRODUCT_CONTEXT('',#12,'mechanical');
#12=APPLICATION_CONTEXT('config; control');
#13=SHAPE_REPRESENTATION('',(#1,
#2),#14);
ENDSEC;
END-ISO-10303-21;
"""

SAMPLE_RECORDS = {
    "1": b"CARTESIAN_POINT('',(0.,0.,0.))",
    "2": b"DIRECTION('',(0.,0.,1.))",
    "10": b"PRODUCT('part','part=1','',(#11))",
    "11": b"PRODUCT_CONTEXT('',#12,'mechanical')",
    "12": b"APPLICATION_CONTEXT('config; control')",
}


class FakeS3Client:
    """Just enough of the boto3 S3 client for the object storage adapter."""

    def __init__(self):
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.fail_uploads = False

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadBucket")

    def create_bucket(self, Bucket, **kwargs):
        self.buckets.setdefault(Bucket, {})

    def get_paginator(self, operation_name):
        client = self

        class Paginator:
            def paginate(self, Bucket, Prefix=""):
                keys = sorted(k for k in client.buckets.get(Bucket, {}) if k.startswith(Prefix))
                yield {"Contents": [{"Key": k} for k in keys]} if keys else {}

        return Paginator()

    def upload_fileobj(self, Fileobj, Bucket, Key):
        if self.fail_uploads:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        self.buckets[Bucket][Key] = Fileobj.read()

    def download_fileobj(self, Bucket, Key, Fileobj):
        if Key not in self.buckets.get(Bucket, {}):
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "GetObject")
        Fileobj.write(self.buckets[Bucket][Key])


@pytest.fixture
def sample_step_file(tmp_path):
    path = tmp_path / "1000410-28L.stp"
    path.write_bytes(SAMPLE_STEP)
    return path


@pytest.fixture(params=["memory", "sqlalchemy"])
def store(request, tmp_path):
    if request.param == "memory":
        kv = InMemoryNamespacedStore()
    else:
        kv = SqlAlchemyNamespacedStore.open(tmp_path / "kv" / "stepdb.db")
    yield kv
    kv.close()


@pytest.fixture
def fake_s3():
    return FakeS3Client()
