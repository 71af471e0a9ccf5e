# Canned dermatology content for mock mode and rule-based extraction.

DERM_TERMS = [
    "erythematous", "pruritic", "vesicular", "papular", "macular",
    "scaly", "crusted", "excoriated", "lichenified", "atrophic",
    "hyperpigmented", "hypopigmented", "nodular", "plaque",
]

MOCK_CONVERSATION = [
    ("speaker_0", "Good morning! What brings you in today?"),
    ("speaker_1", "Hi Doctor. I've had this rash on my arms for about two weeks now. It's really itchy and keeps getting worse."),
    ("speaker_0", "I see. When did you first notice it? And have you noticed any triggers that make it worse?"),
    ("speaker_1", "It started about two weeks ago after I used a new laundry detergent. It seems to get worse at night and when I'm stressed."),
    ("speaker_0", "Any other symptoms? Fever, joint pain, or other skin issues elsewhere on your body?"),
    ("speaker_1", "No fever or joint pain. Just the rash on both arms. It's red and a bit scaly."),
    ("speaker_0", "Have you tried any treatments at home? Any over-the-counter creams or antihistamines?"),
    ("speaker_1", "I tried some hydrocortisone cream but it didn't really help much. I also took some Benadryl at night."),
    ("speaker_0", "Okay. Let me take a look. I can see bilateral erythematous patches on your forearms with some scaling. "
                  "The pattern suggests contact dermatitis, likely allergic reaction to the detergent. Any known allergies?"),
    ("speaker_1", "I'm allergic to penicillin - I get hives. Nothing else that I know of."),
    ("speaker_0", "Good to know. I'm going to prescribe a stronger topical steroid, triamcinolone 0.1% cream. "
                  "Apply it twice daily to the affected areas. Also continue with an oral antihistamine at bedtime. "
                  "Switch back to your old detergent and avoid the new one."),
    ("speaker_1", "Okay, how long should I use the cream?"),
    ("speaker_0", "Use it for two weeks. You should see improvement within a few days. If it's not better in a week "
                  "or gets worse, call the office. Also, follow up with me in three weeks so we can reassess."),
    ("speaker_1", "Thank you, Doctor. Should I avoid anything else?"),
    ("speaker_0", "Try to avoid hot showers and harsh soaps. Use a gentle moisturizer. And no scratching - "
                  "I know it's hard, but it will make it worse."),
    ("speaker_1", "Got it. Thanks so much!"),
]

COMMON_DERM_ICD10 = [
    {"code": "L57.0", "description": "Actinic keratosis", "confidence": 0.92},
    {"code": "L82.1", "description": "Seborrheic keratosis", "confidence": 0.95},
    {"code": "L20.9", "description": "Atopic dermatitis, unspecified", "confidence": 0.89},
    {"code": "L40.9", "description": "Psoriasis, unspecified", "confidence": 0.91},
    {"code": "L30.9", "description": "Dermatitis, unspecified", "confidence": 0.85},
]

OFFICE_VISIT_CPT = {
    "code": "99213",
    "description": "Office visit, established patient, low-moderate complexity",
    "confidence": 0.91,
}

CONTACT_DERMATITIS_DIFFERENTIALS = [
    {
        "condition": "Allergic contact dermatitis",
        "confidence": 0.92,
        "reasoning": "Symmetric erythematous rash on bilateral forearms with temporal relationship to new "
                     "laundry detergent exposure. Classic presentation of Type IV hypersensitivity reaction.",
        "icd10Code": "L23.9",
    },
    {
        "condition": "Irritant contact dermatitis",
        "confidence": 0.75,
        "reasoning": "Similar presentation to allergic contact dermatitis but typically less pruritic. "
                     "Could be chemical irritation rather than true allergy.",
        "icd10Code": "L24.9",
    },
    {
        "condition": "Atopic dermatitis exacerbation",
        "confidence": 0.65,
        "reasoning": "Pruritic eczematous rash with stress as aggravating factor. However, acute onset and "
                     "clear trigger favor contact dermatitis.",
        "icd10Code": "L20.9",
    },
    {
        "condition": "Dermatophytosis (tinea corporis)",
        "confidence": 0.45,
        "reasoning": "Less likely given bilateral symmetric presentation and clear exposure history. Fungal "
                     "infection would typically have raised borders and central clearing.",
        "icd10Code": "B35.4",
    },
]

RASH_DIFFERENTIALS = [
    {
        "condition": "Contact dermatitis, unspecified",
        "confidence": 0.85,
        "reasoning": "Pruritic rash presentation consistent with inflammatory dermatitis.",
        "icd10Code": "L25.9",
    },
    {
        "condition": "Dermatitis, unspecified",
        "confidence": 0.75,
        "reasoning": "Non-specific inflammatory skin condition requiring further evaluation.",
        "icd10Code": "L30.9",
    },
    {
        "condition": "Pruritus, unspecified",
        "confidence": 0.70,
        "reasoning": "Primary symptom is itching with visible skin changes.",
        "icd10Code": "L29.9",
    },
]
