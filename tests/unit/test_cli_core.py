import pytest

from building_compliance.cli import parse_args


def test_parse_args_defaults():
    args = parse_args(["check", "68 Perry Street, Manhattan"])
    assert args.command == "check"
    assert args.target == "68 Perry Street, Manhattan"
    assert args.overlay_config_dir is None
    assert args.unit_count is None
    assert args.strict is False


def test_parse_args_accepts_overlay_config_dir():
    args = parse_args(["portfolio", "--addresses-file", "buildings.txt", "--overlay-config-dir", "config/demo"])
    assert args.overlay_config_dir == "config/demo"
    assert args.addresses_file == "buildings.txt"


def test_parse_args_disambiguation_flags():
    args = parse_args(["resolve", "131 Perry St", "--borough", "MN", "--unit-count", "12", "--property-key", "1006140055"])
    assert args.borough == "MN"
    assert args.unit_count == 12
    assert args.property_key == "1006140055"


def test_parse_args_requires_target_for_address_commands():
    with pytest.raises(SystemExit):
        parse_args(["check"])
    with pytest.raises(SystemExit):
        parse_args(["portfolio"])


def test_parse_args_force_refresh_reverify():
    args = parse_args(["force-refresh", "bbl-1006140044-bin-1011234", "--reverify"])
    assert args.reverify is True
