"""Static knowledge about HTS chapters used to scope a search.

The reasoning oracle suggests branches from the product text; this module is
the deterministic counterpart.  It maps materials, product types and loose
keywords to chapters/headings so that a shortlist can always be produced,
and it owns the material vocabulary used when scanning candidate text.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple


# ---------------------------------------------------------------------------
# Tokenisation
# ---------------------------------------------------------------------------

STOPWORDS: FrozenSet[str] = frozenset({
    "a", "an", "the", "of", "for", "and", "or", "in", "on", "to", "with",
    "at", "by", "from", "as", "is", "are", "be", "that", "this", "it",
    "not", "nesoi", "elsewhere", "specified", "included", "thereof",
    "whether", "also", "only", "having", "such", "any", "all", "its",
    "their", "my", "your", "made", "use", "kind", "type", "new", "set",
})

_TOKEN_RE = re.compile(r"[a-z0-9]+")

# Plural forms that a naive "strip the s" rule gets wrong.
_IRREGULAR_SINGULARS: Dict[str, str] = {
    "glasses": "glass",
    "dresses": "dress",
    "boxes": "box",
    "knives": "knife",
    "shelves": "shelf",
    "leaves": "leaf",
    "mice": "mouse",
    "children": "child",
    "women": "woman",
    "men": "man",
    "trousers": "trouser",
    "pants": "pants",
    "series": "series",
    "glass": "glass",
    "plastics": "plastic",
}


def singular(token: str) -> str:
    if token in _IRREGULAR_SINGULARS:
        return _IRREGULAR_SINGULARS[token]
    if len(token) > 4 and token.endswith("ies"):
        return token[:-3] + "y"
    if len(token) > 4 and token.endswith(("ches", "shes", "sses", "xes")):
        return token[:-2]
    if len(token) > 3 and token.endswith("s") and not token.endswith(("ss", "us", "is")):
        return token[:-1]
    return token


def tokenize(text: str, *, keep_stopwords: bool = False) -> List[str]:
    """Lowercase, split on non-alphanumerics and singularise plurals."""

    tokens = [singular(tok) for tok in _TOKEN_RE.findall(text.lower())]
    if keep_stopwords:
        return tokens
    return [tok for tok in tokens if tok not in STOPWORDS and len(tok) > 1]


def token_set(text: str) -> Set[str]:
    return set(tokenize(text))


# ---------------------------------------------------------------------------
# Chapter titles (abridged)
# ---------------------------------------------------------------------------

CHAPTER_DESCRIPTIONS: Dict[str, str] = {
    "01": "Live animals",
    "02": "Meat and edible meat offal",
    "03": "Fish and crustaceans, molluscs and other aquatic invertebrates",
    "04": "Dairy produce; birds' eggs; natural honey",
    "05": "Products of animal origin, not elsewhere specified",
    "06": "Live trees and other plants; cut flowers",
    "07": "Edible vegetables and certain roots and tubers",
    "08": "Edible fruit and nuts; peel of citrus fruit or melons",
    "09": "Coffee, tea, mate and spices",
    "10": "Cereals",
    "11": "Products of the milling industry; malt; starches",
    "12": "Oil seeds and oleaginous fruits; industrial or medicinal plants",
    "13": "Lac; gums, resins and other vegetable saps and extracts",
    "14": "Vegetable plaiting materials",
    "15": "Animal or vegetable fats and oils",
    "16": "Preparations of meat, fish or crustaceans",
    "17": "Sugars and sugar confectionery",
    "18": "Cocoa and cocoa preparations",
    "19": "Preparations of cereals, flour, starch or milk; bakers' wares",
    "20": "Preparations of vegetables, fruit, nuts or other parts of plants",
    "21": "Miscellaneous edible preparations",
    "22": "Beverages, spirits and vinegar",
    "23": "Residues and waste from the food industries; prepared animal feed",
    "24": "Tobacco and manufactured tobacco substitutes",
    "25": "Salt; sulfur; earths and stone; plastering materials, lime and cement",
    "26": "Ores, slag and ash",
    "27": "Mineral fuels, mineral oils and products of their distillation",
    "28": "Inorganic chemicals",
    "29": "Organic chemicals",
    "30": "Pharmaceutical products",
    "31": "Fertilizers",
    "32": "Tanning or dyeing extracts; dyes, pigments, paints and varnishes; inks",
    "33": "Essential oils and resinoids; perfumery, cosmetic or toilet preparations",
    "34": "Soap, washing preparations, lubricating preparations, waxes, candles",
    "35": "Albuminoidal substances; modified starches; glues; enzymes",
    "36": "Explosives; pyrotechnic products; matches",
    "37": "Photographic or cinematographic goods",
    "38": "Miscellaneous chemical products",
    "39": "Plastics and articles thereof",
    "40": "Rubber and articles thereof",
    "41": "Raw hides and skins (other than furskins) and leather",
    "42": "Articles of leather; saddlery and harness; travel goods, handbags",
    "43": "Furskins and artificial fur; manufactures thereof",
    "44": "Wood and articles of wood; wood charcoal",
    "45": "Cork and articles of cork",
    "46": "Manufactures of straw, of esparto or of other plaiting materials; basketware",
    "47": "Pulp of wood or of other fibrous cellulosic material",
    "48": "Paper and paperboard; articles of paper pulp, of paper or of paperboard",
    "49": "Printed books, newspapers, pictures and other products of the printing industry",
    "50": "Silk",
    "51": "Wool, fine or coarse animal hair; horsehair yarn and woven fabric",
    "52": "Cotton",
    "53": "Other vegetable textile fibers; paper yarn and woven fabric of paper yarn",
    "54": "Man-made filaments",
    "55": "Man-made staple fibers",
    "56": "Wadding, felt and nonwovens; special yarns; twine, cordage, ropes and cables",
    "57": "Carpets and other textile floor coverings",
    "58": "Special woven fabrics; tufted textile fabrics; lace; tapestries; embroidery",
    "59": "Impregnated, coated, covered or laminated textile fabrics",
    "60": "Knitted or crocheted fabrics",
    "61": "Articles of apparel and clothing accessories, knitted or crocheted",
    "62": "Articles of apparel and clothing accessories, not knitted or crocheted",
    "63": "Other made up textile articles; sets; worn clothing and worn textile articles",
    "64": "Footwear, gaiters and the like; parts of such articles",
    "65": "Headgear and parts thereof",
    "66": "Umbrellas, sun umbrellas, walking sticks, whips, riding-crops",
    "67": "Prepared feathers and down; artificial flowers; articles of human hair",
    "68": "Articles of stone, plaster, cement, asbestos, mica or similar materials",
    "69": "Ceramic products",
    "70": "Glass and glassware",
    "71": "Natural or cultured pearls, precious stones, precious metals; imitation jewelry; coins",
    "72": "Iron and steel",
    "73": "Articles of iron or steel",
    "74": "Copper and articles thereof",
    "75": "Nickel and articles thereof",
    "76": "Aluminum and articles thereof",
    "78": "Lead and articles thereof",
    "79": "Zinc and articles thereof",
    "80": "Tin and articles thereof",
    "81": "Other base metals; cermets; articles thereof",
    "82": "Tools, implements, cutlery, spoons and forks, of base metal",
    "83": "Miscellaneous articles of base metal",
    "84": "Nuclear reactors, boilers, machinery and mechanical appliances; parts thereof",
    "85": "Electrical machinery and equipment and parts thereof; sound and television apparatus",
    "86": "Railway or tramway locomotives, rolling stock, track fixtures and fittings",
    "87": "Vehicles other than railway or tramway rolling stock, and parts and accessories thereof",
    "88": "Aircraft, spacecraft, and parts thereof",
    "89": "Ships, boats and floating structures",
    "90": "Optical, photographic, measuring, checking, medical or surgical instruments",
    "91": "Clocks and watches and parts thereof",
    "92": "Musical instruments; parts and accessories of such articles",
    "93": "Arms and ammunition; parts and accessories thereof",
    "94": "Furniture; bedding, mattresses, cushions; lamps and lighting fittings; prefabricated buildings",
    "95": "Toys, games and sports requisites; parts and accessories thereof",
    "96": "Miscellaneous manufactured articles",
    "97": "Works of art, collectors' pieces and antiques",
    "98": "Special classification provisions",
    "99": "Temporary legislation; temporary modifications; additional import restrictions",
}

TEXTILE_CHAPTERS: FrozenSet[str] = frozenset(f"{n:02d}" for n in range(50, 64))
APPAREL_CHAPTERS: FrozenSet[str] = frozenset({"61", "62"})


# ---------------------------------------------------------------------------
# Material vocabulary
# ---------------------------------------------------------------------------

# Display label -> patterns matched (word-bounded) against candidate text.
MATERIAL_VOCABULARY: Dict[str, Tuple[str, ...]] = {
    "Cotton": ("cotton",),
    "Wool": ("wool", "fine animal hair"),
    "Silk": ("silk",),
    "Linen": ("linen", "flax"),
    "Synthetic/Man-made fibers": ("man-made", "synthetic", "polyester", "nylon", "acrylic"),
    "Plastic": ("plastic", "plastics"),
    "Rubber": ("rubber",),
    "Precious metal": ("precious metal", "gold", "silver", "platinum"),
    "Metal": ("metal", "steel", "iron", "aluminum", "aluminium", "copper", "brass"),
    "Wood": ("wood", "wooden", "teak"),
    "Leather": ("leather",),
    "Glass": ("glass",),
    "Ceramic": ("ceramic", "stoneware", "earthenware"),
    # Heading 6911 separates porcelain from other ceramics (6912).
    "Porcelain/China": ("porcelain", "china", "bone china"),
    "Paper/Cardboard": ("paper", "paperboard", "cardboard"),
    "Bamboo": ("bamboo",),
    "Stone": ("stone", "marble", "granite"),
}

GENERIC_MATERIAL_OPTIONS: Tuple[str, ...] = (
    "Plastic", "Metal", "Wood", "Ceramic", "Glass", "Fabric/Textile", "Other",
)

# Families that are not mutually exclusive: gold is a metal.
_COMPATIBLE_MATERIALS: FrozenSet[FrozenSet[str]] = frozenset({
    frozenset({"Metal", "Precious metal"}),
})

_MATERIAL_PATTERNS: Dict[str, re.Pattern[str]] = {
    label: re.compile(r"\b(?:" + "|".join(re.escape(p) for p in patterns) + r")\b")
    for label, patterns in MATERIAL_VOCABULARY.items()
}


_EXCLUSION_RE = re.compile(r"\bother than (?:of )?[a-z /\-]+|\bsteel wool\b")


def materials_in(text: str) -> Set[str]:
    """Return the material families named in ``text``.

    Exclusion clauses ("other than of porcelain or china") do not name the
    article's material and are ignored.
    """

    lowered = _EXCLUSION_RE.sub(" ", text.lower())
    return {label for label, pattern in _MATERIAL_PATTERNS.items() if pattern.search(lowered)}


def material_family(value: Optional[str]) -> Optional[str]:
    """Map a free-text material answer onto a family label, if recognisable."""

    if not value:
        return None
    found = materials_in(value)
    if not found:
        return None
    if "Precious metal" in found:
        return "Precious metal"
    return sorted(found)[0]


def materials_compatible(first: str, second: str) -> bool:
    return first == second or frozenset({first, second}) in _COMPATIBLE_MATERIALS


# Material word -> chapters where articles of that material are classified.
MATERIAL_CHAPTERS: Dict[str, Tuple[str, ...]] = {
    "ceramic": ("69",),
    "porcelain": ("69",),
    "stoneware": ("69",),
    "earthenware": ("69",),
    "glass": ("70",),
    "plastic": ("39",),
    "silicone": ("39", "40"),
    "rubber": ("40",),
    "leather": ("42", "41"),
    "wood": ("44", "94"),
    "wooden": ("44", "94"),
    "bamboo": ("46", "44"),
    "paper": ("48",),
    "cardboard": ("48",),
    "cotton": ("52", "61", "62"),
    "wool": ("51", "61", "62"),
    "silk": ("50", "61", "62"),
    "linen": ("53", "62"),
    "polyester": ("54", "61", "62"),
    "nylon": ("54", "61", "62"),
    "synthetic": ("54", "55", "61", "62"),
    "man-made": ("54", "55", "61", "62"),
    "textile": ("63", "61", "62"),
    "metal": ("73", "83"),
    "steel": ("73", "72"),
    "stainless steel": ("73",),
    "iron": ("73", "72"),
    "aluminum": ("76",),
    "aluminium": ("76",),
    "copper": ("74",),
    "gold": ("71",),
    "silver": ("71",),
    "platinum": ("71",),
    "stone": ("68",),
    "marble": ("68",),
}


# ---------------------------------------------------------------------------
# Product-type hints: product noun -> likely headings
# ---------------------------------------------------------------------------

PRODUCT_TYPE_HINTS: Dict[str, Tuple[str, ...]] = {
    "mug": ("6912", "6911", "3924", "7323"),
    "cup": ("6912", "6911", "3924", "7013", "7323"),
    "plate": ("6912", "6911", "3924"),
    "bowl": ("6912", "6911", "3924", "7323"),
    "kettle": ("8516", "7323"),
    "coffee maker": ("8516",),
    "ring": ("7113", "7117"),
    "necklace": ("7113", "7117"),
    "bracelet": ("7113", "7117"),
    "earring": ("7113", "7117"),
    "jewelry": ("7113", "7117"),
    "t-shirt": ("6109", "6105"),
    "tank top": ("6109",),
    "shirt": ("6205", "6206", "6105", "6106"),
    "blouse": ("6206", "6106"),
    "sweater": ("6110",),
    "chair": ("9401",),
    "sofa": ("9401",),
    "table": ("9403",),
    "toy": ("9503",),
    "doll": ("9503",),
    "headphone": ("8518",),
    "earphone": ("8518",),
    "earbud": ("8518",),
    "gasket": ("4016", "8484"),
    "o-ring": ("4016",),
    "seal": ("4016", "8484"),
    "handbag": ("4202",),
    "backpack": ("4202",),
    "shoe": ("6402", "6403", "6404"),
    "sneaker": ("6404", "6402"),
}

# Longest phrase first so "t-shirt" wins over "shirt" and "coffee maker" over "maker".
_PRODUCT_TYPES_BY_LENGTH: Tuple[str, ...] = tuple(
    sorted(PRODUCT_TYPE_HINTS, key=lambda phrase: (-len(phrase), phrase))
)

APPAREL_PRODUCT_TYPES: FrozenSet[str] = frozenset({
    "t-shirt", "tank top", "shirt", "blouse", "sweater",
})


# ---------------------------------------------------------------------------
# Keyword vocabulary: loose product words -> chapters
# ---------------------------------------------------------------------------

CHAPTER_VOCABULARY: Dict[str, Set[str]] = {
    "09": {"coffee", "tea", "spice", "pepper"},
    "33": {"perfume", "cosmetic", "shampoo", "lotion", "makeup", "lipstick"},
    "39": {"plastic", "polymer", "resin", "polyethylene", "polypropylene", "pvc", "container"},
    "40": {"rubber", "silicone", "gasket", "seal", "tire", "tyre", "latex", "hose"},
    "42": {"handbag", "wallet", "luggage", "suitcase", "backpack", "purse"},
    "61": {"knit", "knitted", "sweater", "pullover", "jersey", "tshirt", "hosiery"},
    "62": {"woven", "trouser", "jacket", "suit", "blazer", "coat", "dress", "skirt", "blouse"},
    "64": {"shoe", "footwear", "boot", "sandal", "sneaker"},
    "69": {"ceramic", "porcelain", "stoneware", "tile"},
    "70": {"glass", "glassware"},
    "71": {"jewelry", "jewellery", "ring", "necklace", "bracelet", "earring", "pendant"},
    "73": {"steel", "iron", "fastener", "bolt", "screw", "nail", "cookware"},
    "84": {"machine", "machinery", "engine", "pump", "compressor", "turbine", "valve", "bearing"},
    "85": {"electronic", "electrical", "battery", "charger", "phone", "television", "speaker",
           "headphone", "earbud", "cable", "heater"},
    "87": {"car", "truck", "automobile", "automotive", "vehicle", "motorcycle", "bicycle"},
    "94": {"furniture", "chair", "table", "sofa", "bed", "mattress", "lamp", "desk", "cabinet"},
    "95": {"toy", "game", "doll", "puzzle", "sport", "fitness"},
    "96": {"pen", "pencil", "brush", "comb", "button", "zipper", "lighter"},
}


def detect_product_type(text: str) -> Optional[str]:
    """Return the longest known product-type phrase present in ``text``."""

    lowered = " ".join(tokenize(text, keep_stopwords=True))
    lowered_raw = text.lower()
    for phrase in _PRODUCT_TYPES_BY_LENGTH:
        if "-" in phrase:
            if re.search(r"\b" + re.escape(phrase) + r"s?\b", lowered_raw):
                return phrase
            continue
        if re.search(r"\b" + re.escape(phrase) + r"\b", lowered):
            return phrase
    return None


def detect_materials(text: str) -> List[str]:
    """Return material words from :data:`MATERIAL_CHAPTERS` found in ``text``."""

    lowered = text.lower()
    found: List[str] = []
    for word in sorted(MATERIAL_CHAPTERS, key=lambda w: (-len(w), w)):
        if re.search(r"\b" + re.escape(word) + r"s?\b", lowered):
            if any(word in longer for longer in found):
                continue
            found.append(word)
    return found


def chapters_for_material(material: Optional[str]) -> List[str]:
    if not material:
        return []
    chapters: List[str] = []
    for word in detect_materials(material):
        for chapter in MATERIAL_CHAPTERS[word]:
            if chapter not in chapters:
                chapters.append(chapter)
    return chapters


def headings_for_product(product_type: Optional[str]) -> Tuple[str, ...]:
    if not product_type:
        return ()
    phrase = detect_product_type(product_type)
    if phrase is None:
        return ()
    return PRODUCT_TYPE_HINTS[phrase]


def chapters_for_keywords(tokens: Iterable[str]) -> List[str]:
    """Rank chapters by how many ``tokens`` appear in their vocabulary."""

    wanted = set(tokens)
    scored: List[Tuple[int, str]] = []
    for chapter, vocab in CHAPTER_VOCABULARY.items():
        hits = len(wanted & vocab)
        if hits:
            scored.append((hits, chapter))
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [chapter for _, chapter in scored]


def static_branches(
    *,
    material: Optional[str],
    product_type: Optional[str],
    description: str,
    limit: int,
) -> List[str]:
    """Deterministic chapter shortlist: material chapters, product hints, keywords."""

    ordered: List[str] = []

    def _add(chapters: Sequence[str]) -> None:
        for chapter in chapters:
            if chapter not in ordered:
                ordered.append(chapter)

    material_chapters = chapters_for_material(material)
    headings = headings_for_product(product_type) or headings_for_product(description)
    hinted = [heading[:2] for heading in headings]
    if material_chapters and hinted:
        # Prefer the hinted chapters that agree with the material.
        _add([chapter for chapter in hinted if chapter in material_chapters])
    _add(material_chapters)
    _add(hinted)
    if not ordered:
        _add(chapters_for_keywords(tokenize(description)))
    return ordered[:limit]
