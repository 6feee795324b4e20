# InsightGen - Default Ontology
# ==============================
"""
Starter clinical ontology for wound care and common comorbidities.

Loaded into an empty store at startup so lookups work before a curated
ontology has been imported.
"""

from typing import List

from .models import Abbreviation, Formality, OntologyEntry, Synonym

S = Synonym
A = Abbreviation


DEFAULT_ONTOLOGY: List[OntologyEntry] = [
    # -------------------------------------------------------------------------
    # Wound types
    # -------------------------------------------------------------------------
    OntologyEntry(
        preferred_term="Pressure Injury",
        category="diagnosis",
        synonyms=[
            S("pressure injury"),
            S("pressure ulcer"),
            S("bedsore", formality=Formality.INFORMAL),
            S("decubitus ulcer", formality=Formality.DEPRECATED),
            S("pressure sore", region="UK"),
        ],
        abbreviations=[A("PI", ["wound", "patient", "stage", "heel", "sacrum"], 0.9, "wound_care")],
        related_terms=["Deep Tissue Injury"],
    ),
    OntologyEntry(
        preferred_term="Deep Tissue Injury",
        category="diagnosis",
        synonyms=[S("deep tissue pressure injury"), S("dti")],
        abbreviations=[A("DTI", ["pressure", "wound"], 0.4, "wound_care")],
    ),
    OntologyEntry(
        preferred_term="Diabetic Foot Ulcer",
        category="diagnosis",
        synonyms=[
            S("diabetic foot ulcer"),
            S("diabetic ulcer"),
            S("neuropathic ulcer", specialty="podiatry"),
            S("foot ulcer", formality=Formality.INFORMAL),
        ],
        abbreviations=[A("DFU", ["diabetes", "foot"], 0.8, "wound_care")],
    ),
    OntologyEntry(
        preferred_term="Venous Leg Ulcer",
        category="diagnosis",
        synonyms=[
            S("venous leg ulcer"),
            S("venous ulcer"),
            S("stasis ulcer"),
            S("leg ulcer", formality=Formality.INFORMAL),
        ],
        abbreviations=[A("VLU", ["venous", "leg"], 0.7, "wound_care")],
    ),
    OntologyEntry(
        preferred_term="Surgical Wound",
        category="diagnosis",
        synonyms=[S("surgical wound"), S("surgical incision"), S("post-operative wound", region="UK")],
    ),
    # -------------------------------------------------------------------------
    # Treatments
    # -------------------------------------------------------------------------
    OntologyEntry(
        preferred_term="Negative Pressure Wound Therapy",
        category="treatment",
        synonyms=[S("negative pressure wound therapy"), S("vacuum assisted closure"),
                  S("wound vac", formality=Formality.INFORMAL)],
        abbreviations=[A("NPWT", ["wound", "therapy"], 0.8, "wound_care"),
                       A("VAC", ["wound"], 0.5, "wound_care")],
    ),
    # -------------------------------------------------------------------------
    # Comorbidities and labs
    # -------------------------------------------------------------------------
    OntologyEntry(
        preferred_term="Diabetes Mellitus",
        category="condition",
        synonyms=[S("diabetes mellitus"), S("diabetes"), S("sugar", formality=Formality.INFORMAL)],
        abbreviations=[A("DM", ["diabetes", "glucose"], 0.8, "clinical")],
    ),
    OntologyEntry(
        preferred_term="Hypertension",
        category="condition",
        synonyms=[S("hypertension"), S("high blood pressure", formality=Formality.INFORMAL)],
        abbreviations=[A("HTN", ["blood pressure"], 0.8, "clinical")],
    ),
    OntologyEntry(
        preferred_term="Peripheral Arterial Disease",
        category="condition",
        synonyms=[S("peripheral arterial disease"), S("peripheral vascular disease")],
        abbreviations=[A("PAD", ["arterial", "vascular"], 0.6, "clinical")],
    ),
    OntologyEntry(
        preferred_term="Anaemia",
        category="condition",
        synonyms=[S("anaemia", region="UK"), S("anemia", region="US")],
    ),
    OntologyEntry(
        preferred_term="Oedema",
        category="condition",
        synonyms=[S("oedema", region="UK"), S("edema", region="US"),
                  S("swelling", formality=Formality.INFORMAL)],
    ),
    OntologyEntry(
        preferred_term="Glycated Haemoglobin",
        category="lab",
        synonyms=[S("glycated haemoglobin", region="UK"), S("glycated hemoglobin", region="US"),
                  S("a1c", formality=Formality.INFORMAL)],
        abbreviations=[A("HBA1C", ["glucose", "diabetes"], 0.9, "lab")],
    ),
    # Non-clinical meaning of PI; "study_role" sorts after "diagnosis", so the wound meaning wins.
    OntologyEntry(
        preferred_term="Principal Investigator",
        category="study_role",
        synonyms=[S("principal investigator"), S("lead investigator")],
        abbreviations=[A("PI", ["study", "trial", "site"], 0.3, "research")],
    ),
]
