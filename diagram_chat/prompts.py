"""Prompt text for the diagram chat loop.

The model is asked to finish every answer with exactly one fenced diagram.
The loop only depends on that convention; the wording here can change freely.
"""

from typing import Optional

from .models import RequestCommand

SYSTEM_PROMPT = """You are a helpful chat assistant that creates diagrams using the {language} syntax.

- If you are missing context, start by exploring the code base with the tools you have.
  You may call tools repeatedly, as long as each call uses different arguments.
  Do not give up unless you are sure the request cannot be fulfilled with your tools.
- When you find a relevant symbol, gather more information about it with the symbol tools,
  and use the file path and line number they return to reference it in the diagram.
- The final segment of your response must always be a valid {language} diagram,
  prefixed with a line containing ```{language} and suffixed with a line containing ```.
- If you know where an item in the diagram is defined, make it clickable by adding
  this syntax to the end of its line:
  click {{ItemLabel}} call linkCallback("{{ItemFilePath}}#L{{LineNumber}}")
  For example: click A call linkCallback("myClass.py#L42")
  Leave off the line number if you are unsure, and only use / as a path separator.
- Do not add anything after the closing ``` delimiter.
- The ``` delimiter must only appear in the two places mentioned above.
- Only include one diagram per response.
"""

CONTEXT_PROMPT = """<context>
{workspace}
{diagram}
</context>"""

NO_DIAGRAM_CONTEXT = "There is no diagram open that you created."

CURRENT_DIAGRAM_CONTEXT = """Refer to this if it sounds like I'm referring to an existing diagram:
{diagram}"""

ITERATE_PROMPT = """Please make changes to the currently open diagram.

Only make the edits described in my instructions and keep everything else as it is.
You are unlikely to need a tool unless the instructions reference the code base.
For example, if the instructions are 'Change all int types to double and rename Duck to Bunny'
for this diagram:
```{language}
classDiagram
    class Duck {{
        +int age
        +swim()
    }}
```
then you should emit:
```{language}
classDiagram
    class Bunny {{
        +double age
        +swim()
    }}
```"""

UML_PROMPT = """Please create a UML class diagram. Include all relevant classes in the code I am referring to.
Use the get_symbol_definition tool for symbols that are not defined in the current context; you will
likely need to call it several times. Explore the classes related to every class you touch and add them.
All class relationships must be defined using the correct syntax, including cardinality for associations
(e.g. "1" --> "*"):
Inheritance: <|--   Composition: *--   Aggregation: o--   Association: -->
Dependency: ..>     Realization: ..|>  Link (solid or dashed): -- or .."""

SEQUENCE_PROMPT = """Please create a sequence diagram that covers the relevant steps and interactions
in the code. Use participants and aliases, loops, alternative paths, parallel actions and notes
where they help explain the behaviour. As always, end your message with the diagram."""

OUTLINE_PROMPT = """You will be given a JSON list of the code symbols in one file of the workspace.
Use it to create a diagram that represents the outline of that file: its classes, their members
and the functions and variables around them. Prefer taller diagrams over wider ones so the
diagram is easier to read. Everything you need is in the JSON, so you should not need any tools."""

OUTLINE_REQUEST = """Create an outline diagram of {path}. Its symbols are:
{symbols}"""

DEFAULT_COMMAND_PROMPT = "Pick an appropriate diagram type, for example: sequence, class, or flowchart."

MISSING_KEYWORD_PROMPT = (
    "Please add the `{language}` keyword to the start of your diagram, like this: ```{language}"
)

NESTED_DEFINITIONS_PROMPT = """Remember that classes are flat structures in class diagrams: nested class
definitions are not supported. Define each class separately and connect them with explicit
relationships, using cardinality to describe them (e.g. one-to-many). Example of correct syntax:

classDiagram
    class House {
        string address
        int rooms
        Kitchen kitchen
    }

    class Kitchen {
        string appliances
        int size
    }

    House "1" --> "1" Kitchen : kitchen"""

FIX_PARSE_ERROR_PROMPT = """Please fix this {language} parse error to make the diagram render correctly: {error}
The produced diagram with the parse error is:
{diagram}"""

NO_DIAGRAM_ERROR = "the response did not contain a diagram block"

TOOL_RESULTS_FOLLOWUP = "Use the tool results above to continue with my request."

ITERATE_WITHOUT_DIAGRAM = (
    "No diagram found. Please create a diagram first to iterate on it."
)

ABANDONED_MESSAGE = "Failed to display your requested diagram. Last error: {error}"

COMMAND_PROMPTS = {
    RequestCommand.ITERATE: ITERATE_PROMPT,
    RequestCommand.UML: UML_PROMPT,
    RequestCommand.SEQUENCE: SEQUENCE_PROMPT,
    RequestCommand.OUTLINE: OUTLINE_PROMPT,
}


def system_prompt(language: str) -> str:
    return SYSTEM_PROMPT.format(language=language)


def command_prompt(command: Optional[RequestCommand], language: str) -> str:
    return COMMAND_PROMPTS.get(command, DEFAULT_COMMAND_PROMPT).format(language=language)


def context_prompt(workspace: Optional[str], diagram: Optional[str]) -> str:
    workspace_ref = (
        f"The root of the workspace is: {workspace}" if workspace else "There is no workspace open."
    )
    diagram_ref = CURRENT_DIAGRAM_CONTEXT.format(diagram=diagram) if diagram else NO_DIAGRAM_CONTEXT
    return CONTEXT_PROMPT.format(workspace=workspace_ref, diagram=diagram_ref)


def outline_request(path: str, symbols_json: str) -> str:
    return OUTLINE_REQUEST.format(path=path, symbols=symbols_json)


def fix_parse_error_prompt(error: str, diagram: str, language: str) -> str:
    return FIX_PARSE_ERROR_PROMPT.format(language=language, error=error, diagram=diagram)
