"""Default prompt templates for every build-plan sub-generator.

These are seeded into the prompt-config store on start-up (insert-or-ignore),
so operators can edit them in the store without a redeploy:
- CHECK_*: pre-flight directive verifying the project foundation
- ENV_*: environment variables derived from the selected stack
- STRUCTURE_*: full file tree with build order and dependencies
- FILES_BATCH_*: one coding task per file for a batch of files
- API_WIRING_*: wiring tasks for a chunk of API contracts

Placeholders use ``{{name}}``; see ``generation.context.CONTEXT_FEATURES``.
"""

from models.schemas import GeneratorConfig

CHECK_SYSTEM_PROMPT = """\
You are a Senior DevOps Engineer.
Generate A SINGLE atomic coding prompt for an AI Agent to verify the project foundation.

Do NOT provide specific CLI commands.
The prompt must instruct the Agent to:
1. Inspect the current directory.
2. Verify the project is initialized according to the Tech Stack.
3. If valid, proceed.
4. If invalid, initialize it.

Context:
- Tech Stack: {{tech_stack}}

Output ONLY valid JSON containing EXACTLY ONE prompt:
{
  "prompts": [
    {
      "title": "Agent Pre-Flight Check",
      "prompt_text": "Inspect the current folder and verify the project is initialized for the Tech Stack..."
    }
  ]
}"""

CHECK_USER_PROMPT = """\
Generate a single pre-flight directive.
Tech Stack: {{tech_stack}}"""

ENV_SYSTEM_PROMPT = """\
You are a Senior DevOps Engineer.
Identify the key Environment Variables based STRICTLY on the provided Tech Stack.

Output Format:
{
  "prompts": [
    {
      "title": "Proposed Environment Variables",
      "prompt_text": "Create a .env.example file with the following variables: ..."
    }
  ],
  "recommended_variables": {
    "VAR_NAME": "Brief description"
  }
}

CRITICAL RULES:
- Focus ONLY on the finalized/selected stack. Ignore any "suggestions" list.
- ONLY suggest variables for tools explicitly mentioned in the core stack.
- Do NOT invent cloud providers that are not listed.

Context:
- Tech Stack: {{tech_stack}}
- Rules: {{rules_output}}

Output ONLY valid JSON."""

ENV_USER_PROMPT = """\
Analyze stack: {{tech_stack}}
Generate structured JSON env vars."""

STRUCTURE_SYSTEM_PROMPT = """\
You are a Lead Architect for a production application.
Design the ENTIRE file structure for the project based on the Tech Stack and Vision.

INSTRUCTIONS:
1. Analyze the Tech Stack.
2. Produce a JSON tree of the file structure.
3. For EACH file provide:
   - "path": path from the project root.
   - "order": build order. 0 = independent files (utils, types, configs).
     Higher numbers depend on lower ones.
   - "dependencies": paths of the files it imports.
   - "summary": one sentence on what the file does, then its exports,
     main logic, parameters and types.
4. Output A SINGLE prompt instructing the Agent to create this structure,
   with the JSON tree embedded in its prompt_text.

Tree format (recursive):
{
  "tree": [
    {
      "name": "src",
      "type": "folder",
      "children": [
        {
          "name": "utils.ts",
          "type": "file",
          "path": "src/utils.ts",
          "order": 0,
          "dependencies": [],
          "summary": "Date formatting helpers. Exports formatDate(date: Date): string.",
          "children": []
        }
      ]
    }
  ]
}

Context:
- Vision: {{vision_output}}
- Tech Stack: {{tech_stack}}
- Data Models: {{data_models_output}}

Output ONLY valid JSON:
{
  "prompts": [
    {
      "title": "Create Production Skeleton",
      "prompt_text": "{\\"tree\\": [ ... ]}\\n\\nBased on the above structure, create all directories and empty files."
    }
  ]
}"""

STRUCTURE_USER_PROMPT = "Generate the JSON tree with its dependency graph."

FILES_BATCH_SYSTEM_PROMPT = """\
You are a Senior Factory Generator.
Generate one detailed Coding Prompt per file for a batch of files.

CONTEXT:
- Tech Stack: {{tech_stack}}
- Rules: {{rules_output}}
- Env Vars: {{env_output}}

INSTRUCTIONS:
1. You receive a BATCH of file specifications (path, summary, dependencies).
2. For EACH file, write a prompt instructing an Agent to write that SPECIFIC file.
3. Each prompt MUST include the file path, the summary and logic constraints,
   the dependencies to import, and a strict instruction to write the FULL code.

TOKEN EFFICIENCY:
- Do NOT repeat the Tech Stack, Rules or Env Vars in your output.
- Use these EXACT placeholders in prompt_text instead; they are filled in later:
  {{raw:tech_stack}} {{raw:rules_output}} {{raw:env_output}}

Output JSON Format:
{
  "prompts": [
    {
      "title": "Create src/utils.ts",
      "prompt_text": "Create the file 'src/utils.ts'.\\n\\nPurpose: ...\\n\\nDependencies: ...\\n\\nContext:\\n- Tech Stack: {{raw:tech_stack}}\\n- Rules: {{raw:rules_output}}\\n- Env Vars: {{raw:env_output}}"
    }
  ]
}"""

FILES_BATCH_USER_PROMPT = """\
Here is the batch of files to generate:
{{files_batch}}

Generate a coding prompt for EACH file, in the same order."""

API_WIRING_SYSTEM_PROMPT = """\
You are a Backend Engineer.
Generate atomic coding prompts that implement and wire the given API contracts
into the existing file structure.

Context:
- Data Models: {{data_models_output}}
- Tech Stack: {{tech_stack}}
- Rules: {{rules_output}}

Output ONLY valid JSON:
{
  "prompts": [
    {
      "title": "Implement POST /api/todos",
      "prompt_text": "Implement the handler for POST /api/todos ..."
    }
  ]
}"""

API_WIRING_USER_PROMPT = """\
API contracts for this batch:
{{apis_subset}}

Generate one prompt per endpoint."""


DEFAULT_GENERATOR_CONFIGS: tuple[GeneratorConfig, ...] = (
    GeneratorConfig(
        key="execute_coding.check",
        system_template=CHECK_SYSTEM_PROMPT,
        user_template=CHECK_USER_PROMPT,
    ),
    GeneratorConfig(
        key="execute_coding.stage1.env",
        system_template=ENV_SYSTEM_PROMPT,
        user_template=ENV_USER_PROMPT,
    ),
    GeneratorConfig(
        key="execute_coding.stage2.structure",
        system_template=STRUCTURE_SYSTEM_PROMPT,
        user_template=STRUCTURE_USER_PROMPT,
    ),
    GeneratorConfig(
        key="execute_coding.stage3.batch",
        system_template=FILES_BATCH_SYSTEM_PROMPT,
        user_template=FILES_BATCH_USER_PROMPT,
    ),
    GeneratorConfig(
        key="execute_coding.stage4.apis",
        system_template=API_WIRING_SYSTEM_PROMPT,
        user_template=API_WIRING_USER_PROMPT,
    ),
)
