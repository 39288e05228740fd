"""Tests for run configuration and tag flag parsing."""

import pytest
from hypothesis import given, strategies as st
from pydantic import ValidationError

from aws_cost_saver.core.config import (
    DEFAULT_STATE_FILE, RunSettings, TagFilter, TrickOptions, parse_tag_flags,
)
from aws_cost_saver.core.exceptions import ConfigurationError


# Hypothesis strategies for generating test data
@st.composite
def valid_aws_region(draw):
    """Generate valid AWS region names."""
    region_prefix = draw(st.sampled_from(['us', 'eu', 'ap', 'ca', 'sa']))
    region_middle = draw(st.sampled_from(['east', 'west', 'north', 'south', 'central', 'southeast', 'northeast']))
    region_suffix = draw(st.integers(min_value=1, max_value=9))
    return f"{region_prefix}-{region_middle}-{region_suffix}"


tag_keys = st.text(alphabet='abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_:', min_size=1, max_size=20)
tag_values = st.text(alphabet='abcdefghijklmnopqrstuvwxyz0123456789-_.', min_size=0, max_size=20)


class TestParseTagFlags:

    def test_key_and_value(self):
        assert parse_tag_flags(["Team=data"]) == (TagFilter(key="Team", values=("data",)),)

    def test_bare_key_matches_any_value(self):
        assert parse_tag_flags(["Team"]) == (TagFilter(key="Team", values=()),)

    def test_same_key_is_merged(self):
        assert parse_tag_flags(["Team=data", "Env=dev", "Team=web", "Team=data"]) == (
            TagFilter(key="Team", values=("data", "web")),
            TagFilter(key="Env", values=("dev",)),
        )

    def test_bare_key_wins_over_values(self):
        assert parse_tag_flags(["Team=data", "Team"]) == (TagFilter(key="Team", values=()),)
        assert parse_tag_flags(["Team", "Team=data"]) == (TagFilter(key="Team", values=()),)

    def test_value_may_contain_equals(self):
        assert parse_tag_flags(["expr=a=b"]) == (TagFilter(key="expr", values=("a=b",)),)

    @pytest.mark.parametrize("flag", ["", "=value", "  =x"])
    def test_empty_key_is_rejected(self, flag):
        with pytest.raises(ConfigurationError):
            parse_tag_flags([flag])

    @given(key=tag_keys, values=st.lists(tag_values, min_size=1, max_size=5))
    def test_every_value_is_kept_once(self, key, values):
        (tag,) = parse_tag_flags([f"{key}={v}" for v in values])

        assert tag.key == key
        assert list(tag.values) == list(dict.fromkeys(values))


class TestTagFilter:

    def test_native_filter_with_values(self):
        assert TagFilter(key="Team", values=("a", "b")).to_native_filter() == {
            "Name": "tag:Team", "Values": ["a", "b"],
        }

    def test_native_filter_key_only(self):
        assert TagFilter(key="Team").to_native_filter() == {"Name": "tag-key", "Values": ["Team"]}

    def test_tagging_filter(self):
        assert TagFilter(key="Team", values=("a",)).to_tagging_filter() == {"Key": "Team", "Values": ["a"]}
        assert TagFilter(key="Team").to_tagging_filter() == {"Key": "Team", "Values": []}


class TestTrickOptions:

    def test_defaults(self):
        options = TrickOptions()
        assert options.dry_run is False
        assert options.tags == ()
        assert not options.has_tag_filters

    def test_is_immutable(self):
        options = TrickOptions(dry_run=True)
        with pytest.raises(ValidationError):
            options.dry_run = False


class TestRunSettings:

    def test_defaults(self):
        settings = RunSettings()
        assert settings.state_file == DEFAULT_STATE_FILE
        assert settings.region is None
        assert not settings.no_default_tricks

    @given(region=valid_aws_region())
    def test_valid_regions_are_accepted(self, region):
        assert RunSettings(region=region).region == region

    @pytest.mark.parametrize("region", ["useast1", "US-EAST-1", "us-east", "moon-1"])
    def test_invalid_regions_are_rejected(self, region):
        with pytest.raises(ValidationError):
            RunSettings(region=region)

    def test_gov_region_is_accepted(self):
        assert RunSettings(region="us-gov-west-1").region == "us-gov-west-1"

    def test_empty_state_file_is_rejected(self):
        with pytest.raises(ValidationError):
            RunSettings(state_file="  ")
