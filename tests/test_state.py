"""Tests for the state document and its storage backends."""

import json

import boto3
import pytest

from aws_cost_saver.auth.session import ClientFactory
from aws_cost_saver.core.exceptions import StateError, StorageError, UnsupportedProtocol
from aws_cost_saver.state.document import StateDocument
from aws_cost_saver.state.storage import LocalStorage, S3Storage, StorageResolver
from aws_cost_saver.tricks.decrease_dynamodb_provisioned_rcu_wcu import DynamoDBTableState
from aws_cost_saver.tricks.remove_nat_gateways import NatGatewayRouteState, NatGatewayState
from aws_cost_saver.tricks.shutdown_ec2_instances import EC2InstanceState


class TestStateDocument:

    def test_json_has_stable_key_ordering(self):
        document = StateDocument()
        document.set('shutdown-ec2-instances', [EC2InstanceState(id='i-1', name='web', state='running')])
        document.set('decrease-dynamodb-provisioned-rcu-wcu', [
            DynamoDBTableState(name='orders', provisioned_throughput=True, rcu=17, wcu=15),
        ])

        content = document.to_json()

        assert list(json.loads(content)) == [
            'decrease-dynamodb-provisioned-rcu-wcu', 'shutdown-ec2-instances',
        ]
        assert content == StateDocument.from_json(content).to_json()
        assert '"provisionedThroughput": true' in content

    def test_records_use_camel_case_and_drop_unset_fields(self):
        document = StateDocument()
        document.set('remove-nat-gateways', [NatGatewayState(
            id='nat-1', vpc_id='vpc-1', subnet_id='subnet-1', state='available',
            routes=[NatGatewayRouteState(route_table_id='rtb-1', destination_ipv6_cidr='::/0')],
        )])

        (record,) = document.get('remove-nat-gateways')

        assert record['vpcId'] == 'vpc-1'
        assert record['routes'] == [{'routeTableId': 'rtb-1', 'destinationIpv6Cidr': '::/0'}]

    def test_absent_key_means_trick_did_not_run(self):
        document = StateDocument({'shutdown-ec2-instances': []})

        assert document.get('shutdown-ec2-instances') == []
        assert document.get('stop-rds-database-instances') is None
        assert 'shutdown-ec2-instances' in document

    @pytest.mark.parametrize("content", [
        "not json",
        "[]",
        '{"shutdown-ec2-instances": {}}',
        '{"shutdown-ec2-instances": [1]}',
    ])
    def test_invalid_documents_are_rejected(self, content):
        with pytest.raises(StateError):
            StateDocument.from_json(content)


class TestRecordedNumbers:

    def test_non_integer_numbers_are_not_recorded(self):
        record = DynamoDBTableState.model_validate({
            'name': 'orders', 'provisionedThroughput': True, 'rcu': '17', 'wcu': None,
        })

        assert record.rcu is None
        assert record.wcu is None

    def test_missing_numbers_are_not_recorded(self):
        record = DynamoDBTableState.model_validate({'name': 'orders', 'provisionedThroughput': True})

        assert record.rcu is None

    def test_booleans_are_not_numbers(self):
        assert DynamoDBTableState.model_validate({'name': 't', 'rcu': True}).rcu is None

    def test_unknown_fields_are_ignored(self):
        record = EC2InstanceState.model_validate({'id': 'i-1', 'state': 'running', 'legacy': 1})

        assert record.id == 'i-1'
        assert record.name == ''


class TestLocalStorage:

    def test_write_read_exists(self, temp_state_file):
        storage = LocalStorage()

        assert not storage.exists(temp_state_file)
        storage.write(temp_state_file, '{"a": []}\n')

        assert storage.exists(temp_state_file)
        assert storage.read(temp_state_file) == '{"a": []}\n'

    def test_file_uri(self, tmp_path):
        storage = LocalStorage()
        uri = f"file://{tmp_path / 'state.json'}"

        storage.write(uri, '{}')

        assert (tmp_path / 'state.json').read_text() == '{}'
        assert not (tmp_path / 'state.json.tmp').exists()

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(StorageError):
            LocalStorage().read(str(tmp_path / 'missing.json'))


class TestS3Storage:

    def test_write_read_exists(self, mock_aws_services):
        boto3.client('s3', region_name='us-east-1').create_bucket(Bucket='states')
        storage = S3Storage(ClientFactory(boto3.Session(region_name='us-east-1')))
        uri = 's3://states/dev/aws-cost-saver.json'

        assert not storage.exists(uri)
        storage.write(uri, '{"a": []}')

        assert storage.exists(uri)
        assert storage.read(uri) == '{"a": []}'

    def test_missing_bucket_write_fails(self, mock_aws_services):
        storage = S3Storage(ClientFactory(boto3.Session(region_name='us-east-1')))

        with pytest.raises(StorageError):
            storage.write('s3://missing-bucket/state.json', '{}')

    @pytest.mark.parametrize("uri", ["s3://bucket-only", "s3:///key", "s3://bucket/"])
    def test_invalid_uris(self, uri):
        with pytest.raises(StorageError):
            S3Storage.parse_uri(uri)


class TestStorageResolver:

    def setup_method(self):
        self.resolver = StorageResolver([LocalStorage(), S3Storage(client_factory=None)])

    @pytest.mark.parametrize("uri,protocol", [
        ("aws-cost-saver.json", "file"),
        ("/tmp/state.json", "file"),
        ("file:///tmp/state.json", "file"),
        ("s3://bucket/state.json", "s3"),
        ("S3://bucket/state.json", "s3"),
    ])
    def test_resolve_by_uri(self, uri, protocol):
        assert self.resolver.resolve_by_uri(uri).get_protocol() == protocol

    def test_unsupported_protocol(self):
        with pytest.raises(UnsupportedProtocol) as exc_info:
            self.resolver.resolve_by_uri("gs://bucket/state.json")

        assert exc_info.value.protocol == "gs"
        assert "gs" in str(exc_info.value)
