SYSTEM_BASE = """You are an AI profile optimization expert who rewrites a person's
professional data for a specific platform. Never fabricate experience,
employers, dates, degrees, or certifications. Preserve factual accuracy and
prefer specific, impact-focused wording over generic claims.
"""

PLATFORM_INSTRUCTIONS = {
    "linkedin": "Generate a professional LinkedIn profile summary and headline. "
                "Focus on achievements, career goals, and professional brand.",
    "github": "Generate a GitHub profile README. Focus on technical skills, projects, "
              "and open-source contributions. Use markdown format.",
    "resume": "Generate a professional resume in structured format. Focus on relevant "
              "experience, skills, and achievements. Be concise and impactful.",
    "freelance": "Generate a freelancer profile bio. Emphasize unique selling points, "
                 "expertise areas, and client benefits. Make it engaging.",
    "job_portal": "Generate a job portal profile optimized for ATS. Focus on keywords, "
                  "quantifiable achievements, and relevant experience.",
    "cover_letter": "Generate a compelling cover letter for the role of {job_title} at "
                    "{company}. Be professional yet personable.",
}

PROFILE_PROMPT = """Based on the following user profile data, {instruction}

User Profile:
- Name: {name}
- Bio: {bio}
- Location: {location}

Education:
{education}

Experience:
{experience}

Skills:
{skills}

Projects:
{projects}

Certifications:
{certifications}
{additional_context}
Generate the {platform} optimized content:
"""

IMPROVE_BIO_PROMPT = """Improve the following bio to make it more {tone} and impactful.
Keep it concise but compelling. Fix any grammar issues.

Original bio:
"{bio}"

Improved bio:
"""

SUGGEST_SKILLS_PROMPT = """Based on the following user experience and projects, suggest 5-10
relevant skills they might want to add to their profile.
Only suggest skills not already in their list.

Current Skills: {skills}
Experience: {experience}
Projects: {projects}

Return JSON only with the skill names under "skills". {format_instructions}
"""
