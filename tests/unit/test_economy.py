"""Unit tests for prestige, modules, permanent upgrades and lifecycle commands."""

import pytest

from datastream.constants import INITIAL_DATA
from datastream.game_engine import GameEngine
from datastream.node_types import NODE_TYPES
from datastream.state import NetworkPhase


def _overload(engine):
    for i in range(60):
        engine.state.create_node("AMPLIFIER", (i % 20) * 60, (i // 20) * 60)


class TestPrestige:
    """Tests for trading Data for consciousness fragments."""

    def test_prestige_resets_network(self, engine):
        engine.state.data = 1500.0
        engine.add_node("PROCESSOR", 700, 400)

        result = engine.prestige()

        assert result["success"] is True
        assert result["fragmentsGained"] == 1
        assert engine.consciousness_fragments == 1
        assert engine.prestige_count == 1
        assert list(engine.state.nodes) == [engine.state.core.id]
        assert engine.state.data == INITIAL_DATA

    def test_below_threshold(self, engine):
        engine.state.data = 999.0
        result = engine.prestige()
        assert result == {"success": False, "message": "Not enough Data for Prestige"}
        assert engine.prestige_count == 0

    def test_reward_floors(self, engine):
        engine.state.data = 2999.0
        assert engine.calculate_prestige_reward() == 2
        engine.state.data = 500.0
        assert engine.calculate_prestige_reward() == 0

    def test_prestige_keeps_upgrades_and_modules(self, engine):
        engine.consciousness_fragments = 50
        engine.unlock_module("FRACTAL_ROUTING")
        engine.buy_upgrade("coreProduction")
        engine.state.data = 1000.0
        engine.state.integrity = 40.0
        assert engine.prestige()["fragmentsGained"] == 1
        assert engine.consciousness_fragments == 50 - 15 - 3 + 1
        assert engine.state.integrity == 100
        assert engine.unlocked_modules == ["FRACTAL_ROUTING"]
        assert engine.permanent_upgrades["coreProduction"] == 1
        assert engine.state.bandwidth == pytest.approx(115.0)

    def test_unlocks_follow_prestige_count(self, engine):
        assert engine.is_node_type_unlocked("PROCESSOR")
        assert not engine.is_node_type_unlocked("OPTIMIZER")
        engine.prestige_count = 1
        assert engine.is_node_type_unlocked("OPTIMIZER")
        assert not engine.is_node_type_unlocked("MEMORY")
        engine.prestige_count = 2
        assert engine.is_node_type_unlocked("MEMORY")
        assert not engine.is_node_type_unlocked("TOASTER")


class TestModules:
    """Tests for prestige modules and the global rules they set."""

    def test_quantum_compression(self, engine):
        engine.consciousness_fragments = 20
        result = engine.unlock_module("QUANTUM_COMPRESSION")
        assert result == {"success": True, "moduleKey": "QUANTUM_COMPRESSION"}
        assert engine.consciousness_fragments == 10
        assert engine.state.loss_multiplier == 0.75

    def test_already_unlocked(self, engine):
        engine.consciousness_fragments = 20
        engine.unlock_module("QUANTUM_COMPRESSION")
        result = engine.unlock_module("QUANTUM_COMPRESSION")
        assert result["message"] == "Module already unlocked"
        assert engine.consciousness_fragments == 10

    def test_not_enough_fragments(self, engine):
        result = engine.unlock_module("SELF_HEALING")
        assert result["message"] == "Not enough Fragments"
        assert engine.unlocked_modules == []

    def test_unknown_module(self, engine):
        assert engine.unlock_module("WARP_DRIVE")["message"] == "Unknown module: WARP_DRIVE"

    def test_invalid_cost(self, engine):
        engine.consciousness_fragments = 20
        assert engine.unlock_module("SELF_HEALING", "free")["message"] == "Invalid module cost"
        assert engine.unlock_module("SELF_HEALING", -1)["message"] == "Invalid module cost"

    def test_explicit_cost(self, engine):
        engine.consciousness_fragments = 20
        engine.unlock_module("SELF_HEALING", 3)
        assert engine.consciousness_fragments == 17

    def test_fractal_routing_and_self_healing(self, engine):
        engine.consciousness_fragments = 40
        engine.unlock_module("FRACTAL_ROUTING")
        engine.unlock_module("SELF_HEALING")
        assert engine.state.bandwidth == pytest.approx(115.0)
        assert engine.state.healing_rate == 1.0

        engine.state.integrity = 50.0
        engine.tick(100)
        assert engine.state.integrity == pytest.approx(50.1)


class TestUpgrades:
    """Tests for permanent upgrades."""

    @pytest.mark.parametrize(
        "key, level, expected",
        [
            ("coreProduction", 0, 3),
            ("coreProduction", 1, 5),
            ("coreProduction", 2, 6),
            ("offlineRate", 1, 8),
            ("nodeDiscount", 2, 26),
        ],
    )
    def test_cost_growth(self, engine, key, level, expected):
        engine.permanent_upgrades[key] = level
        assert engine.get_upgrade_cost(key) == expected

    def test_buy_core_production(self, engine):
        engine.consciousness_fragments = 10
        result = engine.buy_upgrade("coreProduction")
        assert result == {"success": True, "upgradeKey": "coreProduction", "level": 1, "cost": 3}
        assert engine.consciousness_fragments == 7
        assert engine.state.core.data_rate == 3

    def test_bonus_is_recomputed_not_accumulated(self, engine):
        engine.consciousness_fragments = 100
        engine.buy_upgrade("coreProduction")
        engine.buy_upgrade("offlineRate")
        assert engine.state.core.data_rate == 3

    def test_max_level(self, engine):
        engine.consciousness_fragments = 1e9
        engine.permanent_upgrades["offlineRate"] = 10
        assert engine.buy_upgrade("offlineRate")["message"] == "Maximum level reached"

    def test_unknown_upgrade(self, engine):
        assert engine.buy_upgrade("timeTravel")["message"] == "Unknown upgrade: timeTravel"

    def test_not_enough_fragments(self, engine):
        assert engine.buy_upgrade("nodeDiscount")["message"] == "Not enough Fragments"
        assert engine.permanent_upgrades["nodeDiscount"] == 0

    def test_offline_rate(self, engine):
        assert engine.offline_rate == pytest.approx(0.25)
        engine.permanent_upgrades["offlineRate"] = 2
        assert engine.offline_rate == pytest.approx(0.35)

    def test_offline_gains_from_core(self, engine):
        assert engine.calculate_offline_gains(120_000) == 60


class TestPreview:
    """Tests for placement preview."""

    @pytest.fixture
    def predictive(self, rich_engine):
        rich_engine.consciousness_fragments = 5
        rich_engine.unlock_module("PREDICTIVE_FLOW")
        return rich_engine

    def test_requires_module(self, rich_engine):
        result = rich_engine.preview_node("PROCESSOR", 700, 400)
        assert result["success"] is False

    def test_valid_preview_changes_nothing(self, predictive):
        result = predictive.preview_node("PROCESSOR", 700, 400)
        assert result["valid"] is True
        assert result["cost"] == 10
        assert result["connectTo"] == [0]
        assert result["bandwidthUsed"] == pytest.approx(8)
        assert result["overloaded"] is False
        assert len(predictive.state.nodes) == 1
        assert predictive.state.core.connections == []
        assert predictive.state.data == 1000

    def test_projects_neighbor_effects(self, predictive):
        proc = predictive.add_node("PROCESSOR", 700, 400)["node"]
        result = predictive.preview_node("ROUTER", 700, 550)
        assert sorted(result["connectTo"]) == [0, proc.id]
        assert result["bandwidthUsed"] == pytest.approx(3 + 8 * 0.5)
        assert proc.connections == [0]
        assert len(predictive.state.nodes) == 2

    def test_invalid_preview_reports_reason(self, predictive):
        result = predictive.preview_node("PROCESSOR", 640, 400)
        assert result["valid"] is False
        assert result["message"] == "Too close to another node"


class TestLifecycle:
    """Tests for pause and crash acknowledgement."""

    def test_toggle_pause(self, engine):
        assert engine.toggle_pause() == {"success": True, "paused": True}
        engine.tick(100)
        assert engine.state.game_time == 0
        assert engine.toggle_pause()["paused"] is False
        engine.tick(100)
        assert engine.state.game_time == 100

    def test_crash_waits_for_acknowledgement(self):
        crashed = []
        engine = GameEngine(on_crash=crashed.append)
        _overload(engine)
        for _ in range(40):
            engine.tick(100)

        assert crashed == [engine]
        assert engine.state.phase is NetworkPhase.CRASHED
        assert engine.toggle_pause()["success"] is False

        assert engine.acknowledge_crash()["success"] is True
        assert list(engine.state.nodes) == [engine.state.core.id]
        assert engine.state.phase is NetworkPhase.RUNNING
        assert engine.acknowledge_crash()["success"] is False

    def test_crash_without_handler_reboots_immediately(self, engine):
        _overload(engine)
        for _ in range(40):
            engine.tick(100)
        assert engine.state.crash_count == 1
        assert engine.state.phase is NetworkPhase.RUNNING
        assert len(engine.state.nodes) == 1

    def test_crash_keeps_fragments(self, engine):
        engine.consciousness_fragments = 7
        engine.prestige_count = 3
        _overload(engine)
        for _ in range(40):
            engine.tick(100)
        assert engine.consciousness_fragments == 7
        assert engine.prestige_count == 3


class TestSnapshots:
    """Tests for renderer-facing messages."""

    def test_init_message_lists_catalogues(self, engine):
        engine.permanent_upgrades["nodeDiscount"] = 3
        message = engine.to_init_message()
        assert message["type"] == "init"
        assert [t["key"] for t in message["nodeTypes"]] == list(NODE_TYPES)
        processor = next(t for t in message["nodeTypes"] if t["key"] == "PROCESSOR")
        assert processor["cost"] == 9
        assert {m["key"] for m in message["modules"]} == {
            "PREDICTIVE_FLOW",
            "QUANTUM_COMPRESSION",
            "FRACTAL_ROUTING",
            "SELF_HEALING",
        }
        assert message["state"]["type"] == "tick"

    def test_maxed_upgrade_has_no_cost(self, engine):
        engine.permanent_upgrades["nodeDiscount"] = 10
        upgrades = {u["key"]: u for u in engine.to_init_message()["upgrades"]}
        assert upgrades["nodeDiscount"]["cost"] is None

    def test_tick_message_includes_economy(self, engine):
        engine.state.data = 2500.0
        message = engine.to_tick_message()
        assert message["prestigeReward"] == 2
        assert message["consciousnessFragments"] == 0
