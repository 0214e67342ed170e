"""IFC-CPU Interactive Demo.

A Gradio web interface for running the differential pair step by step.

Usage:
    cd /path/to/ifc-cpu
    python demo/gradio_app.py

Features:
    - Write or load lockstep step programs
    - Choose the secure or the vulnerable SkipNext policy
    - See both instances' registers after every step
    - See which predicate failed and which register broke low-equivalence
    - Run the inductive check for the chosen policy
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from ifc_cpu import DifferentialOracle, InvalidOperand, PropertyEvaluator
from ifc_cpu.decode import parse_steps


# =============================================================================
# Example Programs
# =============================================================================

EXAMPLE_PROGRAMS = {
    "Implicit flow via SkipNext": """# high1 high2 low  instruction
1 0 0  SkipNext InputHigh
1 0 0  Not Zero OutputLow     ; skipped only in instance 1
1 0 0  Copy Zero OutputLow""",

    "Classified copy is masked": """1 0 1  Copy InputHigh RegA
1 0 1  Or RegA InputLow OutputLow    ; High label, observed as 0
1 0 1  LabelOf OutputLow OutputHigh""",

    "Label introspection": """0 1 0  Classify InputLow RegB
0 1 0  LabelOf RegB OutputLow         ; reveals only that RegB is High""",

    "Custom": ""
}


# =============================================================================
# Execution Functions
# =============================================================================

def run_program(program: str, policy: str) -> tuple:
    """Run a step program through the differential pair.

    Args:
        program: Step literal source
        policy: 'secure' or 'vulnerable'

    Returns:
        Tuple of (summary_text, trace_text)
    """
    if not program.strip():
        return "Error: No program provided", ""

    try:
        steps = parse_steps(program)
    except InvalidOperand as e:
        return f"Error: {e}", ""

    arm_skip = policy == "vulnerable"
    oracle = DifferentialOracle(arm_skip=arm_skip)
    for step_input in steps:
        oracle.apply(step_input)

    failures = oracle.failures()
    summary_lines = [
        "LOCKSTEP SUMMARY",
        "=" * 40,
        f"Policy: {policy}",
        f"Steps: {oracle.step_index}",
        f"Failing steps: {len(failures)}",
    ]
    for result in failures[:5]:
        summary_lines.append(
            f"  - step {result.step}: {', '.join(result.failed_predicates)}"
            f" [{', '.join(result.broken_registers)}]"
        )
    summary_text = "\n".join(summary_lines)

    trace_lines = ["LOCKSTEP TRACE", "=" * 60]
    for result in oracle.history[:100]:  # Limit to 100 entries
        trace_lines.append("")
        trace_lines.append(result.describe())
    if len(oracle.history) > 100:
        trace_lines.append(f"\n... ({len(oracle.history) - 100} more entries)")

    return summary_text, "\n".join(trace_lines)


def run_inductive(policy: str) -> str:
    """Run the inductive check for a policy and return the report text."""
    evaluator = PropertyEvaluator(arm_skip=policy == "vulnerable")
    return evaluator.inductive().summary()


def load_example(example_name: str) -> str:
    """Load an example program."""
    return EXAMPLE_PROGRAMS.get(example_name, "")


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="IFC-CPU Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # IFC-CPU: Labeled-Register Processor

        Two copies of the processor run in lockstep. They share the low input
        and the instruction stream but receive independent high inputs.
        Their low outputs must never differ.
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Step Program")

                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_PROGRAMS.keys()),
                    value="Implicit flow via SkipNext",
                    label="Load Example"
                )

                program_input = gr.Textbox(
                    value=EXAMPLE_PROGRAMS["Implicit flow via SkipNext"],
                    label="Steps",
                    lines=12,
                    placeholder="<high1> <high2> <low> <Opcode> <operands>"
                )

                policy_radio = gr.Radio(
                    choices=["secure", "vulnerable"],
                    value="secure",
                    label="SkipNext Policy",
                    info="Vulnerable: SkipNext arms on a true operand"
                )

                with gr.Row():
                    run_button = gr.Button("Run Lockstep", variant="primary")
                    inductive_button = gr.Button("Inductive Check")

            with gr.Column(scale=3):
                summary_output = gr.Textbox(
                    label="Summary",
                    lines=10,
                    interactive=False
                )
                trace_output = gr.Textbox(
                    label="Lockstep Trace",
                    lines=20,
                    interactive=False
                )

        with gr.Accordion("ISA Reference", open=False):
            gr.Markdown("""
            | Instruction | Result | Example |
            |-------------|--------|---------|
            | `Copy src dst` | value and label of src | `Copy RegB OutputLow` |
            | `Not src dst` | negated value, same label | `Not Zero OutputLow` |
            | `And a b dst` | a & b, label join | `And RegA InputLow RegC` |
            | `Or a b dst` | a \\| b, label join | `Or RegA RegB OutputLow` |
            | `Classify src dst` | value of src, label High | `Classify InputLow RegA` |
            | `LabelOf src dst` | 1 if src is High, label Low | `LabelOf RegA OutputLow` |
            | `SkipNext src` | skip next instruction (vulnerable policy only) | `SkipNext InputHigh` |

            **Read-only**: Zero, InputHigh (High), InputLow (Low)
            **Mutable**: OutputHigh, OutputLow, RegA, RegB, RegC
            **Low output**: reads 0 whenever OutputLow is labeled High
            """)

        example_dropdown.change(
            fn=load_example,
            inputs=[example_dropdown],
            outputs=[program_input]
        )

        run_button.click(
            fn=run_program,
            inputs=[program_input, policy_radio],
            outputs=[summary_output, trace_output]
        )

        inductive_button.click(
            fn=run_inductive,
            inputs=[policy_radio],
            outputs=[summary_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
