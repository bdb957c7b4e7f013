from conftest import make_workspace
from littleagent.service.prompt import AGENT_PERSONALITY, build_system_prompt


class TestSystemPrompt:
    """The prompt is rebuilt from the workspace's own records every turn."""

    def test_persona_and_profile(self, store, workspace):
        prompt = build_system_prompt(store, workspace.id)

        assert prompt.startswith(AGENT_PERSONALITY)
        assert "--- WORKSPACE BRAND PROFILE ---" in prompt
        assert 'Brand: Sam Creates ("Honest tech for busy people")' in prompt
        assert "Content categories: tech, family" in prompt
        assert '"youtube_integration": 2500' in prompt
        assert "Currency: GBP" in prompt

    def test_sections_for_platforms_work_and_testimonials(self, store, workspace):
        store.create_platform(
            workspace.id, "youtube", "@samcreates", followers=120000, avg_views=45000, engagement_rate=0.052
        )
        store.create_case_study(workspace.id, "Globex", "2M views in a week", industry="tech")
        store.create_testimonial(
            workspace.id, "A joy to work with", "Jo Smith", "Initech", author_title="Head of Social"
        )

        prompt = build_system_prompt(store, workspace.id)

        assert "- youtube (@samcreates): 120K followers, 45K avg views, 5.2% engagement" in prompt
        assert "- Globex (tech): 2M views in a week" in prompt
        assert '- "A joy to work with" (Jo Smith, Head of Social at Initech)' in prompt

    def test_pipeline_summary(self, store, workspace):
        store.create_brand(workspace.id, "Acme", estimated_value=3000.0, pipeline_stage="negotiation")
        store.create_brand(workspace.id, "Globex", estimated_value=2000.0, pipeline_stage="negotiation")
        store.create_brand(workspace.id, "Initech")

        prompt = build_system_prompt(store, workspace.id)

        assert "--- CURRENT PIPELINE ---\nTotal: 3 brands" in prompt
        assert "- negotiation: 2 brand(s), £5,000" in prompt
        assert "- research: 1 brand(s), £0" in prompt

    def test_empty_sections_are_omitted(self, store, workspace):
        prompt = build_system_prompt(store, workspace.id)
        assert "--- PLATFORMS ---" not in prompt
        assert "--- CURRENT PIPELINE ---" not in prompt

    def test_other_workspaces_do_not_leak(self, store, workspace):
        other = make_workspace(store, email="other@example.com", name="Rival Studio")
        store.create_brand(other.id, "SecretCo")

        prompt = build_system_prompt(store, workspace.id)

        assert "Rival Studio" not in prompt
        assert "SecretCo" not in prompt

    def test_model_key_is_never_included(self, store, workspace):
        store.set_encrypted_model_key(workspace.id, "gAAAAA-ciphertext-value")
        assert "gAAAAA-ciphertext-value" not in build_system_prompt(store, workspace.id)
