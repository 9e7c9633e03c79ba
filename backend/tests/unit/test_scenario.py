from __future__ import annotations

from firesim import scenario


def test_all_devices_start_inactive() -> None:
    power_data = scenario.initial_power_data()
    assert all(item["active"] is False for item in power_data)
    assert scenario.total_wattage(power_data) == 0
    assert not scenario.is_overloaded(power_data)


def test_initial_power_data_is_a_copy() -> None:
    power_data = scenario.initial_power_data()
    power_data[0]["active"] = True
    assert scenario.INITIAL_POWER_DATA[0]["active"] is False


def test_full_load_exceeds_panel_limit() -> None:
    power_data = [{**item, "active": True} for item in scenario.INITIAL_POWER_DATA]
    assert scenario.total_wattage(power_data) == 23_900
    assert scenario.is_overloaded(power_data)


def test_load_equal_to_limit_is_not_overload() -> None:
    power_data = [{"device": "x", "count": 4, "watts": 4_000, "active": True}]
    assert scenario.total_wattage(power_data) == scenario.MAX_POWER_LIMIT
    assert not scenario.is_overloaded(power_data)


def test_each_cause_question_has_a_listed_correct_option() -> None:
    assert len(scenario.CAUSE_QUESTIONS) == 2
    for question in scenario.CAUSE_QUESTIONS:
        assert len(question["options"]) == 3
        assert question["correct"] in question["options"]


def test_info_cards_split_evenly_across_teams() -> None:
    slices = [scenario.team_info_cards(team_id, 5) for team_id in range(1, 6)]
    assert [len(item) for item in slices] == [3, 3, 2, 2, 2]
    flattened = [path for item in slices for path in item]
    assert flattened == list(scenario.INFO_CARD_IMAGES)


def test_info_cards_single_team_gets_everything() -> None:
    assert scenario.team_info_cards(1, 1) == list(scenario.INFO_CARD_IMAGES)


def test_info_cards_more_teams_than_cards_is_safe() -> None:
    assert scenario.team_info_cards(12, 12) == [scenario.INFO_CARD_IMAGES[-1]]
    assert scenario.team_info_cards(13, 12) == []
    assert scenario.team_info_cards(0, 6) == []


def test_card_label_is_file_stem() -> None:
    assert scenario.card_label("/static/info-cards/01_출입기록.png") == "01_출입기록"


def test_team_name() -> None:
    assert scenario.team_name(3) == "3조"
