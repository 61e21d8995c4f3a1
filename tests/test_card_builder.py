"""Tests for turning card API payloads into catalog records."""

import pytest

from cards.builder import (
    build_card_data,
    extract_prices,
    get_card_category,
    has_full_details,
    normalize_image_url,
    normalize_search_card
)

# Test data
TCGDEX_POKEMON = {
    "id": "swsh3-136",
    "localId": "136",
    "name": "Furret",
    "category": "Pokemon",
    "illustrator": "tetsuya koizumi",
    "image": "https://assets.tcgdex.net/en/swsh/swsh3/136",
    "rarity": "Uncommon",
    "hp": 110,
    "types": ["Colorless"],
    "evolveFrom": "Sentret",
    "stage": "Stage1",
    "retreat": 1,
    "dexId": [162],
    "set": {"id": "swsh3", "name": "Darkness Ablaze"},
    "pricing": {
        "cardmarket": {"avg": 0.2, "trend": 0.25},
        "tcgplayer": {"normal": {"marketPrice": 0.3}}
    }
}

POKEMONTCG_TRAINER = {
    "id": "base1-91",
    "name": "Bill",
    "supertype": "Trainer",
    "subtypes": ["Item"],
    "number": "91",
    "rarity": "Common",
    "text": ["Draw 2 cards."],
    "set": {"name": "Base", "series": "Base"},
    "images": {
        "small": "https://images.pokemontcg.io/base1/91.png",
        "large": "https://images.pokemontcg.io/base1/91_hires.png"
    },
    "tcgplayer": {"prices": {"normal": {"market": 1.5}}}
}

ENERGY = {
    "id": "sv1-257",
    "name": "Basic Grass Energy",
    "category": "Energy",
    "energyType": "Basic"
}

def test_card_categories():
    assert get_card_category(TCGDEX_POKEMON) == "pokemon"
    assert get_card_category(POKEMONTCG_TRAINER) == "trainer"
    assert get_card_category(ENERGY) == "energy"
    assert get_card_category({"supertype": "Pokémon"}) == "pokemon"
    assert get_card_category({"types": ["Fire"]}) == "pokemon"
    assert get_card_category({"name": "???"}) == "unknown"

def test_category_of_wrapped_payload():
    """Payloads wrapped in a data envelope are unwrapped first."""
    assert get_card_category({"data": POKEMONTCG_TRAINER}) == "trainer"
    assert get_card_category({"data": [ENERGY]}) == "energy"

def test_normalize_image_url():
    """TCGdex asset bases get the high-quality file appended."""
    assert normalize_image_url("https://assets.tcgdex.net/en/swsh/swsh3/136") == \
        "https://assets.tcgdex.net/en/swsh/swsh3/136/high.webp"
    assert normalize_image_url("https://assets.tcgdex.net/en/swsh/swsh3/136/low.png") == \
        "https://assets.tcgdex.net/en/swsh/swsh3/136/low.png"
    assert normalize_image_url("https://images.pokemontcg.io/base1/91.png") == \
        "https://images.pokemontcg.io/base1/91.png"
    assert normalize_image_url(None) == ""

def test_extract_prices_from_both_markets():
    prices = extract_prices(TCGDEX_POKEMON)
    assert prices["cardmarket_avg"] == 0.2
    assert prices["tcgplayer_market_price"] == 0.3
    assert prices["avg"] == 0.25

def test_extract_prices_from_one_market():
    prices = extract_prices(POKEMONTCG_TRAINER)
    assert prices["cardmarket_avg"] is None
    assert prices["avg"] == 1.5

def test_extract_prices_without_pricing():
    assert extract_prices(ENERGY) == {
        "cardmarket_avg": None,
        "tcgplayer_market_price": None,
        "avg": 0
    }

def test_build_pokemon_card():
    """A TCGdex Pokémon keeps its battle details."""
    card = build_card_data(TCGDEX_POKEMON)
    assert card["pokemon_tcg_id"] == "swsh3-136"
    assert card["category"] == "pokemon"
    assert card["subtype"] == "Stage1"
    assert card["set_name"] == "Darkness Ablaze"
    assert card["card_number"] == "136"
    assert card["image_small"].endswith("/high.webp")
    assert card["price_avg"] == 0.25
    assert card["details"]["hp"] == "110"
    assert card["details"]["evolves_from"] == "Sentret"
    assert card["details"]["national_pokedex_number"] == 162

def test_build_trainer_card():
    card = build_card_data(POKEMONTCG_TRAINER)
    assert card["category"] == "trainer"
    assert card["subtype"] == "Item"
    assert card["series"] == "Base"
    assert card["image_large"] == "https://images.pokemontcg.io/base1/91_hires.png"
    assert card["details"]["text"] == "Draw 2 cards."

def test_build_energy_card():
    card = build_card_data(ENERGY)
    assert card["category"] == "energy"
    assert card["details"]["energy_type"] == "Basic"

def test_build_card_without_id():
    with pytest.raises(ValueError):
        build_card_data({"name": "Nameless"})

def test_search_result_and_detail_checks():
    """Set listings only carry briefs; full records carry a category."""
    brief = {"id": "swsh3-136", "localId": "136", "name": "Furret",
             "image": "https://assets.tcgdex.net/en/swsh/swsh3/136"}
    assert not has_full_details(brief)
    assert has_full_details(TCGDEX_POKEMON)
    assert normalize_search_card(brief) == {
        "id": "swsh3-136",
        "local_id": "136",
        "name": "Furret",
        "image": "https://assets.tcgdex.net/en/swsh/swsh3/136/high.webp",
        "set": "",
        "rarity": ""
    }
