"""Normalize raw card payloads from the card API into catalog records.

Payloads come in two shapes: TCGdex (``category``, ``image``, ``localId``,
``pricing``) and the older pokemontcg.io layout (``supertype``, ``images``,
``number``, ``cardmarket``/``tcgplayer``). Both are accepted.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

TCGDEX_ASSET_HOST = 'assets.tcgdex.net'
IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.webp')

CATEGORIES = ('pokemon', 'trainer', 'energy', 'unknown')

def unwrap(raw: Any) -> Dict[str, Any]:
    """Return the card dict from a raw payload, unwrapping 'data' envelopes."""
    if isinstance(raw, dict) and 'data' in raw and isinstance(raw['data'], (dict, list)):
        raw = raw['data']
    if isinstance(raw, list):
        raw = raw[0] if raw else {}
    return raw or {}

def get_card_category(card: Dict[str, Any]) -> str:
    """Classify a raw card as pokemon, trainer, energy or unknown."""
    card = unwrap(card)
    supertype = str(
        card.get('supertype') or card.get('category') or card.get('type') or ''
    ).lower().replace('é', 'e')

    if 'pokemon' in supertype:
        return 'pokemon'
    if 'trainer' in supertype:
        return 'trainer'
    if 'energy' in supertype:
        return 'energy'
    # A card listing elemental types is a Pokémon
    if isinstance(card.get('types'), list) and card['types']:
        return 'pokemon'
    return 'unknown'

def normalize_image_url(url: Optional[str]) -> str:
    """Turn a TCGdex asset base URL into a loadable high-quality image URL.

    Other URLs, and URLs that already name a file, are returned unchanged.
    """
    if not url:
        return ''
    url = url.strip()
    if TCGDEX_ASSET_HOST in url and not url.lower().endswith(IMAGE_EXTENSIONS):
        return f"{url.rstrip('/')}/high.webp"
    return url

def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None

def extract_prices(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Pull a price snapshot out of a raw card.

    Returns:
        Dict with cardmarket_avg, tcgplayer_market_price (either may be None)
        and avg, the mean of the present values or 0
    """
    raw = unwrap(raw)
    pricing = raw.get('pricing') or raw

    cardmarket = pricing.get('cardmarket') or {}
    cardmarket = cardmarket.get('prices', cardmarket)
    cardmarket_avg = None
    for key in ('avg', 'averageSellPrice', 'trendPrice', 'trend'):
        cardmarket_avg = _number(cardmarket.get(key))
        if cardmarket_avg is not None:
            break

    tcgplayer = pricing.get('tcgplayer') or {}
    tcgplayer = tcgplayer.get('prices', tcgplayer)
    tcgplayer_market = None
    for variant in ('holofoil', 'normal', 'reverseHolofoil', 'reverse-holofoil'):
        prices = tcgplayer.get(variant)
        if isinstance(prices, dict):
            tcgplayer_market = _number(prices.get('marketPrice')) or _number(prices.get('market'))
            if tcgplayer_market is None:
                tcgplayer_market = _number(prices.get('midPrice')) or _number(prices.get('mid'))
            if tcgplayer_market is not None:
                break

    present = [p for p in (cardmarket_avg, tcgplayer_market) if p is not None]
    avg = round(sum(present) / len(present), 2) if present else 0

    return {
        'cardmarket_avg': cardmarket_avg,
        'tcgplayer_market_price': tcgplayer_market,
        'avg': avg
    }

def _text(value: Any) -> str:
    if isinstance(value, list):
        return '\n'.join(str(v) for v in value)
    return value or ''

def _image(card: Dict[str, Any], size: str) -> str:
    images = card.get('images') or {}
    return normalize_image_url(images.get(size) or card.get('image'))

def _set_field(card: Dict[str, Any], key: str) -> str:
    card_set = card.get('set')
    if isinstance(card_set, dict):
        if key == 'series':
            series = card_set.get('series') or card_set.get('serie')
            if isinstance(series, dict):
                return series.get('name', '')
            return series or ''
        return card_set.get(key) or ''
    if key == 'name' and isinstance(card_set, str):
        return card_set
    return ''

def build_base_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Fields shared by every card category."""
    card = unwrap(raw)
    prices = extract_prices(card)
    subtype = card.get('subtype') or card.get('stage') or ''
    if not subtype and isinstance(card.get('subtypes'), list) and card['subtypes']:
        subtype = card['subtypes'][0]

    return {
        'pokemon_tcg_id': card.get('id') or '',
        'name': card.get('name') or '',
        'supertype': card.get('supertype') or card.get('category') or '',
        'subtype': subtype,
        'series': _set_field(card, 'series'),
        'set_name': _set_field(card, 'name'),
        'rarity': card.get('rarity') or '',
        'image_small': _image(card, 'small'),
        'image_large': _image(card, 'large'),
        'illustrator': card.get('illustrator') or card.get('artist') or '',
        'price_cardmarket_avg': prices['cardmarket_avg'],
        'price_tcgplayer_market': prices['tcgplayer_market_price'],
        'price_avg': prices['avg'],
        'card_number': str(card.get('number') or card.get('localId') or ''),
        'last_price_update': datetime.now(timezone.utc)
    }

def _pokedex_number(card: Dict[str, Any]) -> Optional[int]:
    numbers = card.get('nationalPokedexNumbers') or card.get('dexId') or []
    if isinstance(numbers, list) and numbers:
        return numbers[0]
    return None

def build_pokemon_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    card = unwrap(raw)
    data = build_base_card_data(card)
    data['category'] = 'pokemon'
    data['details'] = {
        'hp': str(card.get('hp') or ''),
        'types': card.get('types') or [],
        'evolves_from': card.get('evolvesFrom') or card.get('evolveFrom') or '',
        'abilities': card.get('abilities') or [],
        'attacks': card.get('attacks') or [],
        'weaknesses': card.get('weaknesses') or [],
        'resistances': card.get('resistances') or [],
        'retreat_cost': card.get('retreat') or card.get('retreatCost') or [],
        'national_pokedex_number': _pokedex_number(card)
    }
    return data

def build_trainer_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    card = unwrap(raw)
    data = build_base_card_data(card)
    data['category'] = 'trainer'
    data['details'] = {
        'text': _text(card.get('text')),
        'effect': card.get('effect') or ''
    }
    return data

def build_energy_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    card = unwrap(raw)
    data = build_base_card_data(card)
    data['category'] = 'energy'
    data['details'] = {
        'energy_type': card.get('energyType') or card.get('subtype') or '',
        'text': _text(card.get('text') or card.get('effect'))
    }
    return data

def build_generic_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    card = unwrap(raw)
    data = build_base_card_data(card)
    data['category'] = 'unknown'
    data['details'] = {
        'types': card.get('types') or [],
        'national_pokedex_number': _pokedex_number(card)
    }
    return data

BUILDERS = {
    'pokemon': build_pokemon_card_data,
    'trainer': build_trainer_card_data,
    'energy': build_energy_card_data,
    'unknown': build_generic_card_data
}

def build_card_data(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Build a catalog record for any raw card.

    Raises:
        ValueError: If the payload has no card id
    """
    card = unwrap(raw)
    if not card.get('id'):
        raise ValueError("Card payload has no id")
    return BUILDERS[get_card_category(card)](card)

def normalize_search_card(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Reduce a brief search result to the fields a result list shows."""
    card = unwrap(raw)
    return {
        'id': card.get('id') or '',
        'local_id': str(card.get('localId') or card.get('number') or ''),
        'name': card.get('name') or '',
        'image': _image(card, 'small'),
        'set': _set_field(card, 'name'),
        'rarity': card.get('rarity') or ''
    }

def has_full_details(raw: Dict[str, Any]) -> bool:
    """Whether a payload is a full card record rather than a set-listing brief."""
    card = unwrap(raw)
    return any(key in card for key in ('category', 'supertype', 'rarity'))
