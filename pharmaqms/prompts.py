# pharmaqms/prompts.py

"""
Prompt text for the generative-AI collaborator, kept in one place so the
regulatory framing can be tuned without touching the record engine.
"""

CAPA_SUGGESTION = """
Analyze this pharmaceutical deviation and suggest RCA/CAPA: "{description}"
"""

FMEA_ANALYSIS = """
Perform FMEA as per ICH Q9 for: Process: {process_step}, Hazard: {hazard}.
Score severity, occurrence and detection on a 1-10 scale.
"""

HAZARD_SCOUT = """
As a Pharmaceutical Quality Risk Management (QRM) expert, identify 3 critical hazards
for the process step: "{process_step}". Focus on GMP compliance, patient safety and product quality.
"""

AUDIT_CHECKLIST = """
Generate a GMP audit checklist for: {department}. Include references to EU GMP/FDA.
"""

OOS_INVESTIGATION = """
As a QC Laboratory Lead, provide a Phase I investigation plan for an OOS result.
Test: {test}
Result: {result}
Specification: {specification}
Include specific checks for instrument, reagents, and analyst technique.
"""

CHANGE_IMPACT = """
As a Pharmaceutical Regulatory Affairs and Quality Expert, analyze the following proposed change:
Title: {title}
Description: {description}

Provide an impact assessment against:
1. GMP (Manufacturing/Validation)
2. GDP (Distribution/Storage)
3. GLP (Lab/Analytical)
4. GEP (Engineering/Maintenance)
5. FDA/ICH Guidelines (Regulatory Filings)

Suggest specific implementation tasks and estimate the risk level (1-10).
"""

MONOGRAPH_TESTS = """
Provide the official pharmaceutical monograph tests for:
Product: {product} (if this is a brand name, use the official generic monograph).
Category: {category}

Base requirements on current BP / USP-NF / Ph.Eur. monographs and group each test as
Descriptive, Physical, Chemical or Microbiological.
"""

IPQC_MONOGRAPH = """
As a Pharmaceutical Quality Control Expert, provide the mandatory In-Process Quality Control
(IPQC) tests and specification limits for:
Product: {product}
Dosage Form: {dosage_form}

Include the tests with target, USL, LSL and unit, the pharmacopoeial reference,
the production stage for each test and the sampling plan rationale.
"""

MFR_TEMPLATE = """
As a Pharmaceutical Manufacturing Expert, generate a Master Formulation Record (MFR) template for:
Product: {product}
Dosage Form: {dosage_form}

Include the bill of materials with theoretical quantities for a standard batch, the
manufacturing process steps, and the critical process parameters and in-process checks.
"""

ADVISOR_SYSTEM = """
You are the PharmaQMS Regulatory Advisor, an expert on GMP (Good Manufacturing Practice),
ICH guidelines and FDA/EMA/PIC/S regulations. Answer concisely and accurately, citing the
relevant regulation or guideline where one applies.
"""

ADVISOR_FALLBACK = (
    "The regulatory advisor is unavailable right now. "
    "Please consult your site SOPs or the applicable guideline (EU GMP, 21 CFR 211, ICH Q7-Q10) directly."
)
