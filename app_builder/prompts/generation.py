"""
Generation Prompts

Instructions handed to the generation agent for the three kinds of runs:
initial generation, user-requested modification, and build error repair.

The repair prompt carries the build output verbatim and constrains the agent
to minimal changes.
"""

DEFAULT_GENERATION_REQUEST = (
    "Create a modern blog website with markdown support and a dark theme. "
    "Include a home page, blog listing page, and individual blog post pages."
)

GENERATION_REQUIREMENTS = """Important requirements:
- Create a NextJS app with TypeScript and Tailwind CSS
- Use the app directory structure
- Create all files in the current directory
- Include a package.json with all necessary dependencies
- Make the design modern and responsive
- Add at least a home page and one other page but should include as many pages as needed by the application requirements
- Include proper navigation between pages"""


def build_generation_prompt(request: str) -> str:
    """Prompt for generating a new application from scratch."""
    request = (request or "").strip() or DEFAULT_GENERATION_REQUEST
    return f"""{request}

{GENERATION_REQUIREMENTS}
"""


def build_modification_prompt(request: str, project_dir: str) -> str:
    """Prompt for changing an existing application per a user request."""
    return f"""I need to modify an existing Next.js application based on this user request:

"{request}"

The application is located at: {project_dir}

Please:
1. First, understand the current application structure by reading key files
2. Make the requested changes while maintaining the existing functionality
3. Ensure the modified app still builds and runs correctly
4. Test that the changes work as expected

Focus on making targeted changes that fulfill the user's request."""


def build_error_fix_prompt(diagnostic: str, attempt: int, max_attempts: int) -> str:
    """
    Prompt for repairing a failed build.

    Args:
        diagnostic: The build tool's output from the most recent failed build
        attempt: Current repair attempt (1-based)
        max_attempts: Build verification ceiling for this loop
    """
    return f"""I have a Next.js application that failed to build with the following error:

{diagnostic or "Unknown build error"}

Please analyze the error and fix it by:
1. Reading the relevant files to understand the issue
2. Creating any missing components or files
3. Fixing import/export issues
4. Ensuring all required dependencies are properly installed
5. Making sure the application builds successfully

The application is located in the current directory. Focus on fixing the specific build errors mentioned.
This is fix attempt {attempt} of {max_attempts - 1}.

Important: Only make the minimal necessary changes to fix the build errors."""
