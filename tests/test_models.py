from anv.models import EpisodeList, TranslationMode, episode_identity, format_episode


def listing(*labels):
    return EpisodeList(series_id="naruto", translation=TranslationMode.SUB, episodes=list(labels))


def test_named_episodes_are_not_merged():
    episodes = listing("1", "OVA", "Special", "SP1", "1.0").episodes
    assert episodes == ["1", "SP1", "OVA", "Special"]


def test_numeric_duplicates_are_merged():
    assert listing("2", "02", " 2 ", "1").episodes == ["1", "2"]


def test_index_of_matches_exact_episode():
    episodes = listing("1", "SP1", "2")
    assert episodes.index_of("SP1") == 1
    assert episodes.index_of("1") == 0
    assert episodes.index_of("1.0") == 0
    assert episodes.index_of("OVA") is None


def test_episode_identity():
    assert episode_identity("12") == episode_identity("12.0")
    assert episode_identity("SP1") == "SP1"
    assert episode_identity("nan") == "nan"


def test_format_episode():
    assert format_episode(5.0) == "5"
    assert format_episode("12.50") == "12.5"
    assert format_episode("OVA") == "OVA"
