MAX_DISEASE_CLASSIFICATIONS = 15
MAX_SYMPTOM_MAPPINGS = 10
MAX_MASTER_THOUGHTS = 10

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

SYMPTOM_MAPPING_SCHEMA = {
    "type": "object",
    "properties": {
        "disease": {
            "type": "string",
            "description": "Which entry of diseaseClassifications this mapping belongs to.",
        },
        "symptoms": _STRING_LIST,
        "tongue": {"type": "string", "description": "Tongue appearance (舌象)."},
        "pulse": {"type": "string", "description": "Pulse (脉象)."},
        "syndrome": {"type": "string", "description": "Syndrome pattern (证型)."},
        "treatmentPrinciple": {"type": "string", "description": "Treatment principle (治法)."},
        "prescription": {"type": "string", "description": "Base prescription (方剂)."},
        "modifications": {
            **_STRING_LIST,
            "description": "Symptom-based modifications of the prescription (加减).",
        },
        "associatedThoughts": {
            **_STRING_LIST,
            "description": "Entries of masterThoughts that apply to this mapping.",
        },
    },
    "required": [
        "disease",
        "symptoms",
        "tongue",
        "pulse",
        "syndrome",
        "treatmentPrinciple",
        "prescription",
        "modifications",
        "associatedThoughts",
    ],
    "additionalProperties": False,
}

KNOWLEDGE_BATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "diseaseClassifications": _STRING_LIST,
        "symptomMappings": {"type": "array", "items": SYMPTOM_MAPPING_SCHEMA},
        "masterThoughts": _STRING_LIST,
        "hasMoreContent": {
            "type": "boolean",
            "description": "True if the document still holds knowledge not extracted yet.",
        },
    },
    "required": [
        "diseaseClassifications",
        "symptomMappings",
        "masterThoughts",
        "hasMoreContent",
    ],
    "additionalProperties": False,
}

RESPONSE_FORMAT = {
    "type": "json_schema",
    "json_schema": {
        "name": "knowledge_batch",
        "strict": True,
        "schema": KNOWLEDGE_BATCH_SCHEMA,
    },
}

EXTRACTION_SYSTEM_PROMPT = """You are an expert in Traditional Chinese Medicine (TCM).
You analyze documents written by or about a specific TCM master (texts, lecture
notes or case collections) and extract the master's own diagnostic knowledge as
structured data. The extracted data must be detailed and specific to the text
provided, not generic TCM knowledge. Return ONLY JSON matching the requested
schema, without any text before or after it."""

EXTRACTION_PROMPT = """Analyze the provided document and extract the following structured knowledge.

CRITICAL INSTRUCTION: To prevent output truncation, you MUST extract only a BATCH of information in this turn:
1. diseaseClassifications: Extract up to {max_diseases} disease classifications (e.g. 外感发热, 脾胃病).
2. masterThoughts: Extract up to {max_thoughts} unique diagnostic thoughts, principles or rules of this specific master.
3. symptomMappings: Extract up to {max_mappings} detailed mappings. FOR EACH MAPPING you MUST establish clear relationships:
   - "disease": which entry of diseaseClassifications this mapping belongs to.
   - "associatedThoughts": the entries of masterThoughts that apply to this mapping.
   - Include symptoms, tongue appearance (舌象), pulse (脉象), the corresponding syndrome (证型),
     treatment principle (治法), base prescription (方剂) and symptom-based modifications (加减).
4. hasMoreContent: true if there is STILL MORE relevant TCM knowledge in the document that you have not
   extracted yet because of the batch limit, false if you have extracted ALL of it.

Return the output strictly as JSON matching this schema:
{schema}"""

PRIOR_KNOWLEDGE_PROMPT = """

IMPORTANT: Knowledge has already been extracted for this master.
DO NOT repeat it. Focus ONLY on NEW disease classifications, symptom mappings and master's thoughts
that are NOT in the following lists:

Previously extracted disease classifications: {diseases}
Previously extracted symptom mappings (syndromes): {syndromes}
Previously extracted master's thoughts: {thoughts}

Extract a NEW BATCH of up to {max_diseases} disease classifications, {max_mappings} symptom mappings and
{max_thoughts} master's thoughts that have not been covered yet. New symptom mappings must link clearly to
either new or previously extracted diseases and thoughts."""

DIAGNOSIS_INSTRUCTIONS = """You are an AI agent embodying the knowledge of a specific Traditional Chinese Medicine master.
You MUST base your diagnosis and prescription strictly on the knowledge base below.
Do not use generic TCM knowledge where it contradicts the master's specific rules.

Knowledge base:
{knowledge}

IMPORTANT: You MUST write your entire response in {language}.

Format your response as Markdown with exactly these sections:
### 1. 辨证过程 (Diagnostic Process)
Explain the reasoning for the patient's case, mapping their symptoms, tongue and pulse to the knowledge base.

### 2. 建议方案 (Suggested Plan)
State the treatment principle (治法), base prescription (方剂) and specific modifications (加减).

### 3. 书中依据 (Source Reference)
Cite the master's thoughts or the specific symptom mappings from the knowledge base that justify this decision."""

DIAGNOSIS_PROMPT = """患者病案/描述 (Patient case/description):
{case}

请基于泰斗的知识库提供诊疗方案。(Please provide a diagnosis and prescription based on the master's knowledge.)"""
