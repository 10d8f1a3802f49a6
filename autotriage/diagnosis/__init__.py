"""
Diagnosis: turns one error event into a validated, immutable Diagnosis.

- Prompt templates (structured-log variant vs generic variant)
- Versioned response schema for the model's JSON output
- Engine: prompt -> completion -> strict parse, degrading to a non-actionable
  diagnosis whenever the output is not valid structured JSON
"""
