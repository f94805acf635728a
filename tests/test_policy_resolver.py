"""Tests for the burn policy resolver — proves malformed config fails closed."""

import copy
import json

import pytest
from pathlib import Path

from blackhole.models.reputation import AchievementKind
from blackhole.policy.resolver import BurnPolicy


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def params() -> dict:
    return json.loads((CONFIG_DIR / "burn_params.json").read_text(encoding="utf-8"))


class TestLoading:
    def test_from_config_dir(self) -> None:
        policy = BurnPolicy.from_config_dir(CONFIG_DIR)
        assert policy.history_capacity() == 10
        assert policy.score_multiplier() == 100
        assert [t.name for t in policy.tiers()][0] == "Unranked"
        assert policy.tiers()[-1].is_unbounded

    def test_default_matches_bundled_config(self) -> None:
        assert BurnPolicy.default().tiers() == BurnPolicy.from_config_dir(CONFIG_DIR).tiers()

    def test_from_custom_dir(self, tmp_path: Path, params: dict) -> None:
        params["history_capacity"] = 3
        (tmp_path / "burn_params.json").write_text(json.dumps(params), encoding="utf-8")
        assert BurnPolicy.from_config_dir(tmp_path).history_capacity() == 3

    def test_achievements(self) -> None:
        policy = BurnPolicy.from_config_dir(CONFIG_DIR)
        by_id = {a.achievement_id: a for a in policy.achievements()}
        assert by_id["first_burn"].name == "First Sacrifice"
        assert by_id["serial_burner"].kind == AchievementKind.BURNS
        assert by_id["whale_burner"].kind == AchievementKind.AMOUNT
        assert by_id["reputation_master"].kind == AchievementKind.REPUTATION

    def test_tokens(self) -> None:
        policy = BurnPolicy.from_config_dir(CONFIG_DIR)
        assert policy.token("USDT").decimals == 6
        assert policy.token_by_address(policy.token("DEMO").address.upper().replace("0X", "0x")) \
            == policy.token("DEMO")
        assert policy.token_by_address("0x" + "f" * 40) is None
        with pytest.raises(ValueError, match="Unsupported token"):
            policy.token("DOGE")

    def test_reference_format(self) -> None:
        policy = BurnPolicy.from_config_dir(CONFIG_DIR)
        assert policy.is_well_formed_reference("0x" + "0a" * 32)
        assert not policy.is_well_formed_reference("0x" + "0a" * 32 + "0")
        assert not policy.is_well_formed_reference("0x")

    def test_explorer_url(self) -> None:
        policy = BurnPolicy.from_config_dir(CONFIG_DIR)
        ref = "0x" + "0a" * 32
        assert policy.explorer_url(ref) == f"https://etherscan.io/tx/{ref}"


class TestValidation:
    def test_gap_in_ladder(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tiers"][1]["max"] = 998
        with pytest.raises(ValueError, match="not contiguous"):
            BurnPolicy(bad)

    def test_ladder_must_start_at_zero(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tiers"] = bad["tiers"][1:]
        with pytest.raises(ValueError, match="start at 0"):
            BurnPolicy(bad)

    def test_empty_ladder(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tiers"] = []
        with pytest.raises(ValueError):
            BurnPolicy(bad)

    def test_top_tier_must_be_unbounded(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tiers"][-1]["max"] = 1_000_000
        with pytest.raises(ValueError, match="unbounded"):
            BurnPolicy(bad)

    def test_only_top_tier_unbounded(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tiers"][2]["max"] = None
        with pytest.raises(ValueError, match="unbounded"):
            BurnPolicy(bad)

    def test_unknown_achievement_kind(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["achievements"][0]["kind"] = "streak"
        with pytest.raises(ValueError):
            BurnPolicy(bad)

    def test_duplicate_achievement(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["achievements"].append(dict(bad["achievements"][0]))
        with pytest.raises(ValueError, match="Duplicate achievement"):
            BurnPolicy(bad)

    def test_zero_capacity(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["history_capacity"] = 0
        with pytest.raises(ValueError, match="history_capacity"):
            BurnPolicy(bad)

    def test_duplicate_token(self, params: dict) -> None:
        bad = copy.deepcopy(params)
        bad["tokens"].append(dict(bad["tokens"][0]))
        with pytest.raises(ValueError, match="Duplicate token"):
            BurnPolicy(bad)
