"""
Customer import field registry and controlled vocabularies.

Target fields a spreadsheet column may map to, the header synonyms that
recognise them, and the canonical values for vocabulary-backed fields.
"""

# =============================================================================
# TARGET FIELDS
# =============================================================================
# field name -> value kind used by the normalizer

TARGET_FIELDS: dict[str, str] = {
    "navn": "text",
    "adresse": "text",
    "postnummer": "postal_code",
    "poststed": "text",
    "telefon": "phone",
    "epost": "email",
    "kontaktperson": "text",
    "kategori": "vocabulary",
    "el_type": "vocabulary",
    "brann_system": "vocabulary",
    "driftskategori": "vocabulary",
    "notater": "text",
    "siste_kontroll": "date",
    "neste_kontroll": "date",
    "siste_el_kontroll": "date",
    "neste_el_kontroll": "date",
    "siste_brann_kontroll": "date",
    "neste_brann_kontroll": "date",
    "kontroll_intervall_mnd": "integer",
    "org_nummer": "text",
    "ekstern_id": "text",
}

REQUIRED_FIELDS = ("navn", "adresse")

# Minimum lengths for the required fields
MIN_NAME_LENGTH = 2
MIN_ADDRESS_LENGTH = 3

# Pairs of (last, next) control dates; next must not precede last
CONTROL_DATE_PAIRS = (
    ("siste_kontroll", "neste_kontroll"),
    ("siste_el_kontroll", "neste_el_kontroll"),
    ("siste_brann_kontroll", "neste_brann_kontroll"),
)

# Weights for the completeness score (missing field = 0)
COMPLETENESS_WEIGHTS: dict[str, float] = {
    "navn": 1.0,
    "adresse": 1.0,
    "postnummer": 0.8,
    "poststed": 0.6,
    "telefon": 0.7,
    "epost": 0.7,
    "kontaktperson": 0.5,
    "siste_kontroll": 0.9,
    "neste_kontroll": 0.9,
}


# =============================================================================
# HEADER SYNONYMS
# =============================================================================
# Keys are normalized headers (casefolded, single spaces). Lookup also tries
# the header with separators removed, so "e-post" and "e post" hit "epost".

HEADER_SYNONYMS: dict[str, str] = {
    # navn
    "navn": "navn",
    "kundenavn": "navn",
    "kunde": "navn",
    "firma": "navn",
    "firmanavn": "navn",
    "bedrift": "navn",
    "bedriftsnavn": "navn",
    "selskap": "navn",
    "virksomhet": "navn",
    "organisasjon": "navn",
    "name": "navn",
    "customer": "navn",
    "customer name": "navn",
    "client": "navn",
    # adresse
    "adresse": "adresse",
    "besøksadresse": "adresse",
    "gateadresse": "adresse",
    "veiadresse": "adresse",
    "address": "adresse",
    "street": "adresse",
    # postnummer
    "postnummer": "postnummer",
    "postnr": "postnummer",
    "postnr.": "postnummer",
    "postkode": "postnummer",
    "pnr": "postnummer",
    "zip": "postnummer",
    "zipcode": "postnummer",
    "postal code": "postnummer",
    # poststed
    "poststed": "poststed",
    "sted": "poststed",
    "by": "poststed",
    "city": "poststed",
    "town": "poststed",
    # telefon
    "telefon": "telefon",
    "telefonnummer": "telefon",
    "tlf": "telefon",
    "tlf.": "telefon",
    "mobil": "telefon",
    "mobilnummer": "telefon",
    "phone": "telefon",
    "mobile": "telefon",
    # epost
    "epost": "epost",
    "epostadresse": "epost",
    "mail": "epost",
    "email": "epost",
    # kontaktperson
    "kontaktperson": "kontaktperson",
    "kontakt": "kontaktperson",
    "ansvarlig": "kontaktperson",
    "daglig leder": "kontaktperson",
    "contact": "kontaktperson",
    # kategori
    "kategori": "kategori",
    "tjeneste": "kategori",
    "tjenestetype": "kategori",
    "category": "kategori",
    # el_type
    "el type": "el_type",
    "eltype": "el_type",
    "anleggstype": "el_type",
    # brann_system
    "brannsystem": "brann_system",
    "brann system": "brann_system",
    "alarmsystem": "brann_system",
    "sentral": "brann_system",
    # driftskategori
    "driftskategori": "driftskategori",
    "driftstype": "driftskategori",
    "drift": "driftskategori",
    # notater
    "notater": "notater",
    "notat": "notater",
    "merknad": "notater",
    "merknader": "notater",
    "kommentar": "notater",
    "kommentarer": "notater",
    "beskrivelse": "notater",
    "notes": "notater",
    "comments": "notater",
    # control dates
    "siste kontroll": "siste_kontroll",
    "forrige kontroll": "siste_kontroll",
    "neste kontroll": "neste_kontroll",
    "siste el kontroll": "siste_el_kontroll",
    "siste el-kontroll": "siste_el_kontroll",
    "neste el kontroll": "neste_el_kontroll",
    "neste el-kontroll": "neste_el_kontroll",
    "siste brannkontroll": "siste_brann_kontroll",
    "siste brann kontroll": "siste_brann_kontroll",
    "neste brannkontroll": "neste_brann_kontroll",
    "neste brann kontroll": "neste_brann_kontroll",
    # interval
    "intervall": "kontroll_intervall_mnd",
    "kontrollintervall": "kontroll_intervall_mnd",
    "frekvens": "kontroll_intervall_mnd",
    "intervall mnd": "kontroll_intervall_mnd",
    # identifiers
    "org.nr": "org_nummer",
    "orgnr": "org_nummer",
    "organisasjonsnummer": "org_nummer",
    "kundenummer": "ekstern_id",
    "kundenr": "ekstern_id",
    "ekstern id": "ekstern_id",
    "customer id": "ekstern_id",
}


# =============================================================================
# CONTROLLED VOCABULARIES
# =============================================================================
# canonical value -> aliases seen in customer spreadsheets. Aliases that only
# differ from the canonical value by case or punctuation are left out; the
# normalized match step resolves those.

VOCABULARIES: dict[str, dict[str, list[str]]] = {
    "kategori": {
        "El-Kontroll": [
            "el", "elsjekk", "el-sjekk", "elektrisk", "elektrisk kontroll",
            "el kontrol", "elkontrol", "elektro", "elektrokontroll",
        ],
        "Brannvarsling": [
            "brann", "brannvarsel", "brannvarsler", "brannalarm",
            "brannvarslingsanlegg", "alarm", "brannsikring", "brannsikkerhet",
        ],
        "El-Kontroll + Brannvarsling": [
            "begge", "el+brann", "el og brann", "el & brann", "brann og el",
            "brann+el", "el-kontroll og brannvarsling",
            "brannvarsling og el-kontroll", "full kontroll", "komplett",
            "el + brann", "brann + el", "alle tjenester",
        ],
    },
    "el_type": {
        "Landbruk": ["gård", "gard", "bonde", "jordbruk", "farm", "fjøs", "låve"],
        "Næring": ["bedrift", "kontor", "butikk", "industri", "næringsbygg", "firma"],
        "Bolig": ["hus", "leilighet", "privat", "enebolig", "rekkehus", "hjem"],
        "Gartneri": ["drivhus", "gartner", "planteskole", "veksthus"],
    },
    "brann_system": {
        "Elotec": ["elotec system"],
        "ICAS": ["icas system"],
        "Elotec + ICAS": ["elotec og icas", "begge systemer", "icas+elotec"],
        "2x Elotec": ["2 elotec", "to elotec", "dobbel elotec"],
    },
    "driftskategori": {
        "Storfe": ["ku", "kyr", "melkeku", "kjøttfe"],
        "Sau": ["sauer", "sauehold"],
        "Geit": ["geiter", "geitehold"],
        "Gris": ["griser", "svin", "svinehold"],
        "Storfe/Sau": ["storfe og sau", "sau og storfe", "kombinert"],
        "Gartneri": ["drivhus", "veksthus"],
        "Ingen": ["ikke relevant", "n/a"],
    },
}


# =============================================================================
# DUPLICATE DETECTION
# =============================================================================

# Composite score weights; postal code is an exact comparison
DUPLICATE_FIELD_WEIGHTS: dict[str, float] = {
    "navn": 0.45,
    "adresse": 0.40,
    "postnummer": 0.15,
}

# Company form suffixes folded to one spelling before comparing names
COMPANY_SUFFIXES: dict[str, str] = {
    "a/s": "as",
    "a.s.": "as",
    "a.s": "as",
    "asa": "asa",
    "ans": "ans",
    "da": "da",
    "enk": "enk",
    "nuf": "nuf",
}

# Street abbreviations expanded before comparing addresses
ADDRESS_ABBREVIATIONS: dict[str, str] = {
    "gt": "gate",
    "gt.": "gate",
    "vn": "veien",
    "vn.": "veien",
    "v.": "vei",
    "pl": "plass",
    "pl.": "plass",
}


# =============================================================================
# CLEANING
# =============================================================================

# Cell text that means "no value"; compared case-insensitively after trimming
EMPTY_VALUE_MARKERS = ("-", "–", "—", ".", "#n/a", "#ref!", "#verdi!", "#value!")

# Word markers; kept in vocabulary columns, where "Ingen" can be a real value
EMPTY_VALUE_WORDS = ("n/a", "na", "ingen", "tom", "null", "undefined", "none")

# Words that mark a totals row under the table
SUMMARY_ROW_WORDS = ("sum", "total", "totalt", "subtotal", "i alt", "gjennomsnitt", "snitt", "antall")

# UTF-8 read as latin-1 / cp1252
MOJIBAKE_FIXES: dict[str, str] = {
    "Ã¦": "æ",
    "Ã¸": "ø",
    "Ã¥": "å",
    "Ã†": "Æ",
    "Ã˜": "Ø",
    "Ã…": "Å",
    "Ã©": "é",
    "Ã¶": "ö",
    "Ã¤": "ä",
    "Ã¼": "ü",
    "Ã–": "Ö",
    "Ã„": "Ä",
}

# Zero-width and direction marks; non-breaking space becomes a plain space
INVISIBLE_CHARACTERS = ("\u200b", "\u200c", "\u200d", "\ufeff", "\u00ad", "\u200e", "\u200f")
