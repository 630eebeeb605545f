# pharmaqms/ai_services.py

"""
Generative-AI collaborator built on the google-genai SDK.

``AIService.generate`` returns parsed JSON or raises CollaboratorUnavailable.
The task helpers below it never raise: a failed call degrades to ``None``,
"no suggestion available", and the operator fills the form in by hand.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from google import genai
from google.genai import types

from . import prompts
from .errors import CollaboratorUnavailable
from .utils import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"

STRING = {"type": "STRING"}
NUMBER = {"type": "NUMBER"}
STRING_LIST = {"type": "ARRAY", "items": STRING}


def _object(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema = {"type": "OBJECT", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _array(item: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "ARRAY", "items": item}


CAPA_SCHEMA = _object({
    "rootCause": STRING,
    "correctiveAction": STRING,
    "preventiveAction": STRING,
    "severityEstimate": {"type": "STRING", "enum": ["Low", "Medium", "High", "Critical"]},
}, ["rootCause", "correctiveAction", "preventiveAction"])

FMEA_SCHEMA = _object({
    "severity": NUMBER,
    "occurrence": NUMBER,
    "detection": NUMBER,
    "potentialEffect": STRING,
    "recommendedMitigation": STRING,
}, ["severity", "occurrence", "detection", "potentialEffect", "recommendedMitigation"])

HAZARD_SCHEMA = _array(_object({
    "hazard": STRING,
    "potentialEffect": STRING,
    "suggestedMitigation": STRING,
}, ["hazard", "potentialEffect", "suggestedMitigation"]))

CHECKLIST_SCHEMA = _array(_object({"checkItem": STRING, "regulatoryRef": STRING}, ["checkItem", "regulatoryRef"]))

OOS_SCHEMA = _object({
    "immediateActions": STRING_LIST,
    "analystChecklist": STRING_LIST,
    "probableRootCauses": STRING_LIST,
    "retestStrategy": STRING,
})

CHANGE_IMPACT_SCHEMA = _object({
    "riskScore": NUMBER,
    "regulatoryImplications": STRING_LIST,
    "impactsFound": STRING_LIST,
    "suggestedTasks": STRING_LIST,
    "isValidationRequired": {"type": "BOOLEAN"},
}, ["riskScore", "impactsFound", "suggestedTasks"])

MONOGRAPH_SCHEMA = _array(_object({
    "t": STRING,
    "s": STRING,
    "category": {"type": "STRING", "enum": ["Descriptive", "Physical", "Chemical", "Microbiological"]},
}, ["t", "s", "category"]))

IPQC_SCHEMA = _object({
    "pharmacopoeiaRef": STRING,
    "tests": _array(_object({
        "testName": STRING, "target": STRING, "usl": NUMBER, "lsl": NUMBER,
        "unit": STRING, "frequency": STRING, "stage": STRING,
    })),
    "samplingPlan": STRING,
}, ["tests", "samplingPlan", "pharmacopoeiaRef"])

MFR_SCHEMA = _object({
    "ingredients": _array(_object({"materialName": STRING, "quantity": STRING, "unit": STRING},
                                  ["materialName", "quantity", "unit"])),
    "steps": _array(_object({
        "operation": STRING,
        "instruction": STRING,
        "limit": STRING,
        "category": {"type": "STRING", "enum": ["Preparation", "Processing", "QC", "Packaging"]},
    }, ["operation", "instruction", "category"])),
    "theoreticalYield": STRING,
    "batchSize": STRING,
}, ["ingredients", "steps", "batchSize"])


class AIService:
    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL, client=None):
        if client is None and not api_key:
            raise CollaboratorUnavailable("No Google API key configured")
        self.client = client or genai.Client(api_key=api_key)
        self.model = model

    @retry_with_backoff(retries=2, initial_delay=0.5)
    def _call(self, prompt: str, config: types.GenerateContentConfig):
        return self.client.models.generate_content(model=self.model, contents=prompt, config=config)

    def generate(self, prompt: str, schema: Dict[str, Any],
                 system_instruction: Optional[str] = None) -> Union[Dict, List]:
        """Structured JSON generation. Raises CollaboratorUnavailable on any failure."""
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=0.3,
            response_mime_type="application/json",
            response_schema=schema,
        )
        try:
            response = self._call(prompt, config)
            return json.loads(response.text)
        except Exception as e:
            logger.warning(f"AI collaborator unavailable: {e}")
            raise CollaboratorUnavailable(str(e)) from e

    def _suggest(self, prompt: str, schema: Dict[str, Any]) -> Optional[Union[Dict, List]]:
        try:
            return self.generate(prompt, schema)
        except CollaboratorUnavailable:
            return None

    # --- task helpers ---

    def capa_suggestions(self, description: str) -> Optional[Dict]:
        return self._suggest(prompts.CAPA_SUGGESTION.format(description=description), CAPA_SCHEMA)

    def fmea_analysis(self, process_step: str, hazard: str) -> Optional[Dict]:
        return self._suggest(prompts.FMEA_ANALYSIS.format(process_step=process_step, hazard=hazard), FMEA_SCHEMA)

    def hazard_scout(self, process_step: str) -> Optional[List[Dict]]:
        return self._suggest(prompts.HAZARD_SCOUT.format(process_step=process_step), HAZARD_SCHEMA)

    def audit_checklist(self, department: str) -> Optional[List[Dict]]:
        return self._suggest(prompts.AUDIT_CHECKLIST.format(department=department), CHECKLIST_SCHEMA)

    def oos_investigation_plan(self, test: str, result: str, specification: str) -> Optional[Dict]:
        prompt = prompts.OOS_INVESTIGATION.format(test=test, result=result, specification=specification)
        return self._suggest(prompt, OOS_SCHEMA)

    def change_impact(self, title: str, description: str) -> Optional[Dict]:
        return self._suggest(prompts.CHANGE_IMPACT.format(title=title, description=description), CHANGE_IMPACT_SCHEMA)

    def monograph_tests(self, product: str, category: str) -> Optional[List[Dict]]:
        return self._suggest(prompts.MONOGRAPH_TESTS.format(product=product, category=category), MONOGRAPH_SCHEMA)

    def ipqc_monograph(self, product: str, dosage_form: str) -> Optional[Dict]:
        return self._suggest(prompts.IPQC_MONOGRAPH.format(product=product, dosage_form=dosage_form), IPQC_SCHEMA)

    def mfr_template(self, product: str, dosage_form: str) -> Optional[Dict]:
        return self._suggest(prompts.MFR_TEMPLATE.format(product=product, dosage_form=dosage_form), MFR_SCHEMA)

    def ask_advisor(self, question: str) -> str:
        """Free-text regulatory Q&A. Falls back to a fixed pointer at the manual sources."""
        config = types.GenerateContentConfig(system_instruction=prompts.ADVISOR_SYSTEM, temperature=0.4)
        try:
            answer = (self._call(question, config).text or "").strip()
        except Exception as e:
            logger.warning(f"Regulatory advisor unavailable: {e}")
            return prompts.ADVISOR_FALLBACK
        return answer or prompts.ADVISOR_FALLBACK
